"""Plan catalog lookups and the static plan definitions used to seed it."""

import logging
from dataclasses import dataclass
from typing import Dict, List

from fastapi import Depends
from sqlalchemy.orm import Session

from vendor_billing_svc.models.base import get_db
from vendor_billing_svc.models.subscription_plan import SubscriptionPlan


class PlanNotFoundError(LookupError):
    """Raised when a Stripe price id has no plan catalog entry."""

    def __init__(self, price_id: str) -> None:
        super().__init__(f"No matching plan found for price {price_id}")
        self.price_id = price_id


@dataclass(frozen=True)
class PlanEntry:
    plan_type: str
    billing_interval: str


@dataclass(frozen=True)
class PlanDefinition:
    stripe_price_id: str
    plan_type: str
    billing_interval: str


PLAN_DEFINITIONS: List[PlanDefinition] = [
    PlanDefinition(stripe_price_id="price_1Qm0j3AkjdPARDjPzuQeCIMv", plan_type="essential", billing_interval="month"),
    PlanDefinition(stripe_price_id="price_1Qm0j0AkjdPARDjPTefXNs7O", plan_type="essential", billing_interval="year"),
    PlanDefinition(stripe_price_id="price_1Qm0iyAkjdPARDjPwP6t2XOA", plan_type="featured", billing_interval="month"),
    PlanDefinition(stripe_price_id="price_1Qm0ivAkjdPARDjPZmvd6zCy", plan_type="featured", billing_interval="year"),
    PlanDefinition(stripe_price_id="price_1Qm0itAkjdPARDjP5L87NBDb", plan_type="elite", billing_interval="month"),
    PlanDefinition(stripe_price_id="price_1Qm0ipAkjdPARDjPF78SLb2j", plan_type="elite", billing_interval="year"),
]


class DatabasePlanCatalog:
    """
    Read-only plan catalog backed by the subscription_plans table.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def lookup(self, price_id: str) -> PlanEntry:
        """
        Resolve a Stripe price id to its plan tier.

        :param price_id: The Stripe price id of a subscription item.
        :return: The matching PlanEntry.
        :raises PlanNotFoundError: if the catalog has no row for the price.
        """
        plan = (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.stripe_price_id == price_id)
            .one_or_none()
        )
        if plan is None:
            raise PlanNotFoundError(price_id)
        return PlanEntry(plan_type=plan.plan_type, billing_interval=plan.billing_interval)


class StaticPlanCatalog:
    """
    Plan catalog held in memory, keyed by Stripe price id.
    """

    def __init__(self, entries: Dict[str, PlanEntry]) -> None:
        self._entries = dict(entries)

    @classmethod
    def from_definitions(cls, definitions: List[PlanDefinition]) -> "StaticPlanCatalog":
        return cls({
            definition.stripe_price_id: PlanEntry(definition.plan_type, definition.billing_interval)
            for definition in definitions
        })

    def lookup(self, price_id: str) -> PlanEntry:
        try:
            return self._entries[price_id]
        except KeyError:
            raise PlanNotFoundError(price_id) from None


def get_plan_catalog(db: Session = Depends(get_db)) -> DatabasePlanCatalog:
    return DatabasePlanCatalog(db)


def sync_plan_catalogue(db: Session, definitions: List[PlanDefinition] = PLAN_DEFINITIONS) -> List[SubscriptionPlan]:
    """
    Upsert every plan definition into the subscription_plans table.

    :param db: SQLAlchemy Session instance.
    :param definitions: Plan definitions to persist.
    :return: The persisted rows, in the order of ``definitions``.
    :raises Exception: on commit failure, after rolling back.
    """
    persisted: List[SubscriptionPlan] = []
    for definition in definitions:
        plan = (
            db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.stripe_price_id == definition.stripe_price_id)
            .one_or_none()
        )
        if plan is None:
            plan = SubscriptionPlan(stripe_price_id=definition.stripe_price_id)
            db.add(plan)
        plan.plan_type = definition.plan_type
        plan.billing_interval = definition.billing_interval
        persisted.append(plan)

    try:
        db.commit()
    except Exception as commit_error:
        db.rollback()
        logging.error(commit_error, exc_info=True)
        raise
    logging.info(f"Plan catalog synced with {len(persisted)} entries.")
    return persisted
