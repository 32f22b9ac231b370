import logging
import datetime

from sqlalchemy.orm import Session

from vendor_billing_svc.models.vendor import Vendor
from vendor_billing_svc.plan_catalog import PlanNotFoundError
from vendor_billing_svc.stripe_integration import StripeIntegration
from vendor_billing_svc.vendor_subscription import (
    apply_plan,
    clear_plan,
    subscription_period_end,
    subscription_price_id,
    update_end_date,
    utcnow,
)

CHECKOUT_COMPLETED = 'checkout.session.completed'
SUBSCRIPTION_UPDATED = 'customer.subscription.updated'
SUBSCRIPTION_DELETED = 'customer.subscription.deleted'


class MissingUserIdError(ValueError):
    """Raised when an event that must credit a vendor carries no userId."""


def _event_object(event: dict) -> dict:
    return (event.get('data') or {}).get('object') or {}


def _metadata_user_id(obj: dict):
    return (obj.get('metadata') or {}).get('userId')


def _event_created_at(event: dict) -> datetime.datetime:
    created = event.get('created')
    if created is None:
        return utcnow()
    return datetime.datetime.fromtimestamp(int(created), tz=datetime.timezone.utc)


def handle_checkout_session_completed(event: dict, db: Session, catalog, stripe_integration: StripeIntegration) -> None:
    """
    Credit the vendor with the plan bought through a Checkout session.

    The subscription is fetched live from Stripe, so its data is stamped with
    the fetch time rather than the event time.
    """
    event_id = event.get('id', 'N/A')
    session = _event_object(event)
    user_id = _metadata_user_id(session)
    if not user_id:
        raise MissingUserIdError('No user ID in session metadata')

    subscription_id = session.get('subscription')
    if not subscription_id:
        raise ValueError(f"Missing subscription id in {CHECKOUT_COMPLETED} event {event_id}")

    observed_at = utcnow()
    subscription = stripe_integration.retrieve_subscription(subscription_id)
    price_id = subscription_price_id(subscription)
    try:
        plan = catalog.lookup(price_id)
    except PlanNotFoundError as e:
        logging.error(f"Event {event_id}: {e}; subscription {subscription_id} for user {user_id} not applied.")
        raise

    written = apply_plan(db, Vendor.user_id == user_id, plan.plan_type, subscription_period_end(subscription), observed_at)
    if written:
        logging.info(f"Event {event_id}: vendor for user {user_id} set to plan {plan.plan_type}.")
    else:
        logging.info(f"Event {event_id}: no vendor updated for user {user_id} (missing or holding newer data).")


def handle_subscription_updated(event: dict, db: Session, catalog, stripe_integration: StripeIntegration) -> None:
    # Only the period end moves here; plan tier changes land with the daily reconciliation
    event_id = event.get('id', 'N/A')
    subscription = _event_object(event)
    user_id = _metadata_user_id(subscription)
    if not user_id:
        logging.info(f"Event {event_id}: {SUBSCRIPTION_UPDATED} without userId metadata. Skipping.")
        return

    written = update_end_date(db, Vendor.user_id == user_id, subscription_period_end(subscription), _event_created_at(event))
    if written:
        logging.info(f"Event {event_id}: subscription end date updated for user {user_id}.")
    else:
        logging.info(f"Event {event_id}: no vendor updated for user {user_id} (missing, without plan or holding newer data).")


def handle_subscription_deleted(event: dict, db: Session, catalog, stripe_integration: StripeIntegration) -> None:
    event_id = event.get('id', 'N/A')
    subscription = _event_object(event)
    user_id = _metadata_user_id(subscription)
    if not user_id:
        logging.info(f"Event {event_id}: {SUBSCRIPTION_DELETED} without userId metadata. Skipping.")
        return

    written = clear_plan(db, Vendor.user_id == user_id, _event_created_at(event))
    if written:
        logging.info(f"Event {event_id}: subscription removed for user {user_id}.")
    else:
        logging.info(f"Event {event_id}: no vendor updated for user {user_id} (missing or holding newer data).")


EVENT_HANDLERS = {
    CHECKOUT_COMPLETED: handle_checkout_session_completed,
    SUBSCRIPTION_UPDATED: handle_subscription_updated,
    SUBSCRIPTION_DELETED: handle_subscription_deleted,
}


def process_event(event: dict, db: Session, catalog, stripe_integration: StripeIntegration) -> None:
    """
    Process a Stripe event and update the matching vendor's subscription.

    :param event: Dictionary representing the Stripe event payload.
    :param db: SQLAlchemy Session instance.
    :param catalog: Plan catalog exposing ``lookup(price_id)``.
    :param stripe_integration: Client used to fetch subscriptions from Stripe.
    :raises MissingUserIdError: if a checkout event carries no userId.
    :raises Exception: on any other processing or commit failure.
    """
    try:
        event_type = event.get('type')
        if not event_type:
            error_msg = "Missing 'type' in event payload"
            logging.error(error_msg)
            raise ValueError(error_msg)

        event_id = event.get('id', 'N/A')
        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            logging.info(f"Unhandled event type: {event_type} for event {event_id}. No action taken.")
            return

        logging.info(f"Webhook received: {event_type} ({event_id})")
        handler(event, db, catalog, stripe_integration)

    except Exception as e:
        logging.error(e, exc_info=True)
        raise
