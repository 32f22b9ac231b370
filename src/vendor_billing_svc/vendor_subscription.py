"""
Shared helpers for reading Stripe subscriptions and writing vendor plan state.

Every write is a conditional update: it only lands when the provider data
behind it was observed no earlier than the data behind the row's current
values, so a stale reader can never overwrite a newer write.
"""
import logging
import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from vendor_billing_svc.models.vendor import Vendor


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.timezone.utc)


def period_end_to_datetime(epoch_seconds: Any) -> datetime.datetime:
    """
    Convert a Stripe epoch timestamp to an aware UTC datetime.

    :raises ValueError: if the value is missing or not an integer timestamp.
    """
    if epoch_seconds is None:
        raise ValueError("Missing current_period_end on subscription")
    try:
        return datetime.datetime.fromtimestamp(int(epoch_seconds), tz=datetime.timezone.utc)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"Invalid current_period_end value: {epoch_seconds!r}")


def subscription_price_id(subscription: Mapping[str, Any]) -> str:
    items = (subscription.get('items') or {}).get('data') or []
    if not items:
        raise ValueError(f"Subscription {subscription.get('id')} has no items")
    price_id = (items[0].get('price') or {}).get('id')
    if not price_id:
        raise ValueError(f"Subscription {subscription.get('id')} has no price id")
    return price_id


def subscription_period_end(subscription: Mapping[str, Any]) -> datetime.datetime:
    """
    Return the current billing-period end of a subscription.

    Newer Stripe API versions report the period on the subscription item
    instead of the subscription itself, so both places are checked.
    """
    period_end = subscription.get('current_period_end')
    if period_end is None:
        items = (subscription.get('items') or {}).get('data') or []
        if items:
            period_end = items[0].get('current_period_end')
    return period_end_to_datetime(period_end)


def _conditional_update(db: Session, vendor_filter, values: dict, observed_at: datetime.datetime,
                        require_plan: bool = False) -> bool:
    query = db.query(Vendor).filter(vendor_filter).filter(
        or_(Vendor.subscription_synced_at.is_(None), Vendor.subscription_synced_at <= observed_at)
    )
    if require_plan:
        query = query.filter(Vendor.subscription_plan.isnot(None))
    values = dict(values, subscription_synced_at=observed_at)
    try:
        updated = query.update(values, synchronize_session=False)
        db.commit()
    except Exception as commit_error:
        db.rollback()
        logging.error(commit_error, exc_info=True)
        raise commit_error
    return updated > 0


def apply_plan(db: Session, vendor_filter, plan_type: str, end_date: datetime.datetime,
               observed_at: datetime.datetime) -> bool:
    """
    Set both the plan tier and the period end on the matched vendor.

    :param db: SQLAlchemy Session instance.
    :param vendor_filter: SQLAlchemy criterion selecting at most one vendor,
        e.g. ``Vendor.user_id == user_id``.
    :param plan_type: Internal plan tier resolved from the plan catalog.
    :param end_date: Current billing-period end.
    :param observed_at: When the provider data was observed.
    :return: True if a row was written, False if no vendor matched or the row
        already holds newer data.
    :raises ValueError: if plan_type or end_date is missing.
    """
    if not plan_type or end_date is None:
        raise ValueError("A plan write needs both a plan type and an end date")
    return _conditional_update(
        db,
        vendor_filter,
        {"subscription_plan": plan_type, "subscription_end_date": end_date},
        observed_at,
    )


def update_end_date(db: Session, vendor_filter, end_date: datetime.datetime,
                    observed_at: datetime.datetime) -> bool:
    """
    Move the period end of a vendor that already holds a plan.

    Vendors without a plan are left alone so the plan and end date stay paired.
    """
    if end_date is None:
        raise ValueError("An end date write needs an end date")
    return _conditional_update(
        db,
        vendor_filter,
        {"subscription_end_date": end_date},
        observed_at,
        require_plan=True,
    )


def clear_plan(db: Session, vendor_filter, observed_at: datetime.datetime) -> bool:
    return _conditional_update(
        db,
        vendor_filter,
        {"subscription_plan": None, "subscription_end_date": None},
        observed_at,
    )
