"""Daily resync of vendor plans against the active subscriptions in Stripe."""
import logging
from dataclasses import dataclass
from typing import Any, Dict

from sqlalchemy.orm import Session

from vendor_billing_svc.models.vendor import Vendor
from vendor_billing_svc.plan_catalog import PlanNotFoundError
from vendor_billing_svc.stripe_integration import StripeIntegration
from vendor_billing_svc.vendor_subscription import (
    apply_plan,
    clear_plan,
    subscription_period_end,
    subscription_price_id,
    utcnow,
)

UPDATED = 'updated'
CLEARED = 'cleared'
SKIPPED = 'skipped'


@dataclass
class ReconciliationSummary:
    processed: int = 0
    updated: int = 0
    cleared: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "message": "Subscription verification completed",
            "vendorsProcessed": self.processed,
            "vendorsUpdated": self.updated,
            "vendorsCleared": self.cleared,
            "vendorsSkipped": self.skipped,
            "vendorsFailed": self.failed,
        }


def reconcile_vendor(db: Session, vendor_id: int, user_id: str, catalog,
                     stripe_integration: StripeIntegration) -> str:
    """
    Re-derive one vendor's plan from Stripe and overwrite the local record.

    :return: One of ``updated``, ``cleared`` or ``skipped``.
    :raises Exception: on Stripe or database failures.
    """
    observed_at = utcnow()
    subscriptions = stripe_integration.list_active_subscriptions(user_id, limit=1)

    if not subscriptions:
        logging.info(f"No active subscription found for vendor {vendor_id}")
        if not clear_plan(db, Vendor.id == vendor_id, observed_at):
            logging.info(f"Vendor {vendor_id} holds newer data; left unchanged.")
            return SKIPPED
        return CLEARED

    subscription = subscriptions[0]
    price_id = subscription_price_id(subscription)
    try:
        plan = catalog.lookup(price_id)
    except PlanNotFoundError as e:
        logging.error(f"{e}; vendor {vendor_id} left unchanged.")
        return SKIPPED

    if not apply_plan(db, Vendor.id == vendor_id, plan.plan_type, subscription_period_end(subscription), observed_at):
        logging.info(f"Vendor {vendor_id} holds newer data; left unchanged.")
        return SKIPPED
    logging.info(f"Updated subscription for vendor {vendor_id}")
    return UPDATED


def verify_subscriptions(db: Session, catalog, stripe_integration: StripeIntegration) -> ReconciliationSummary:
    """
    Resync every vendor that currently holds a plan.

    Vendors are processed one at a time. A failure on one vendor is logged
    and rolled back, and the run moves on to the next vendor.

    :param db: SQLAlchemy Session instance.
    :param catalog: Plan catalog exposing ``lookup(price_id)``.
    :param stripe_integration: Client used to list active subscriptions.
    :return: Counts of processed vendors by outcome.
    :raises Exception: if the vendors cannot be listed at all.
    """
    logging.info("Starting subscription verification...")
    vendors = (
        db.query(Vendor.id, Vendor.user_id)
        .filter(Vendor.subscription_plan.isnot(None))
        .order_by(Vendor.id)
        .all()
    )
    logging.info(f"Found {len(vendors)} vendors with subscriptions")

    summary = ReconciliationSummary()
    for vendor_id, user_id in vendors:
        summary.processed += 1
        try:
            outcome = reconcile_vendor(db, vendor_id, user_id, catalog, stripe_integration)
        except Exception as e:
            db.rollback()
            summary.failed += 1
            logging.error(f"Error processing vendor {vendor_id}: {e}", exc_info=True)
            continue

        if outcome == UPDATED:
            summary.updated += 1
        elif outcome == CLEARED:
            summary.cleared += 1
        else:
            summary.skipped += 1

    logging.info(
        f"Subscription verification completed: {summary.processed} processed, {summary.updated} updated, "
        f"{summary.cleared} cleared, {summary.skipped} skipped, {summary.failed} failed"
    )
    return summary
