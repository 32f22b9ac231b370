import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, status, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vendor_billing_svc.config import get_app_base_url, get_endpoint_secret
from vendor_billing_svc.models.base import get_db
from vendor_billing_svc.models.vendor import Vendor
from vendor_billing_svc.plan_catalog import PlanNotFoundError, get_plan_catalog
from vendor_billing_svc.stripe_integration import StripeIntegration, WebhookVerificationError
from vendor_billing_svc.stripe_event_processor import MissingUserIdError, process_event
from vendor_billing_svc.vendor_subscription import apply_plan, subscription_period_end, utcnow

router = APIRouter()


class CheckoutSessionRequest(BaseModel):
    price_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class PlanChangeRequest(BaseModel):
    price_id: str = Field(..., min_length=1)


def _subscription_details(subscription) -> Dict[str, Any]:
    return {
        "id": subscription.get("id"),
        "current_period_end": subscription.get("current_period_end"),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end") or False),
        "pending_update": subscription.get("pending_update"),
    }


@router.post("/checkout-session", status_code=200)
def create_checkout_session(checkout_request: CheckoutSessionRequest, request: Request,
                            catalog=Depends(get_plan_catalog)):
    try:
        catalog.lookup(checkout_request.price_id)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    base_url = request.headers.get("origin") or get_app_base_url()
    success_url = checkout_request.success_url
    cancel_url = checkout_request.cancel_url
    if not (success_url and cancel_url) and not base_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="success_url and cancel_url are required when no origin is known")
    success_url = success_url or f"{base_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = cancel_url or f"{base_url}/subscription"

    stripe_integration = StripeIntegration()
    try:
        session = stripe_integration.create_checkout_session(
            checkout_request.price_id,
            checkout_request.user_id,
            checkout_request.email,
            success_url,
            cancel_url,
        )
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    if not session.get("url"):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="No session URL returned from Stripe")
    return {"sessionId": session["id"], "url": session["url"]}


@router.post("/webhook", status_code=200)
async def process_webhook(request: Request, db=Depends(get_db), catalog=Depends(get_plan_catalog)):
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    endpoint_secret = get_endpoint_secret()
    if not endpoint_secret:
        logging.error("Stripe endpoint secret not configured; rejecting webhook.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stripe endpoint secret not configured")

    # The signature covers the raw bytes, so they are verified undecoded
    payload = await request.body()
    stripe_integration = StripeIntegration()
    try:
        event = stripe_integration.process_webhook_event(payload, sig_header, endpoint_secret)
    except WebhookVerificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Webhook signature verification failed: {e}")

    try:
        # Handlers call Stripe and the database synchronously
        await run_in_threadpool(process_event, event, db, catalog, stripe_integration)
    except MissingUserIdError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logging.error(f"Webhook error: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook handler failed", "details": str(e)},
        )

    return {"received": True}


@router.get("/subscription/{subscription_id}", status_code=200)
def get_subscription(subscription_id: str):
    stripe_integration = StripeIntegration()
    try:
        subscription = stripe_integration.retrieve_subscription(subscription_id)
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return {"success": True, "subscription": _subscription_details(subscription)}


@router.put("/subscription/{subscription_id}", status_code=200)
def change_subscription_plan(subscription_id: str, plan_change: PlanChangeRequest,
                             db=Depends(get_db), catalog=Depends(get_plan_catalog)):
    """
    Move a vendor's subscription onto another catalog price and record the new
    plan tier on the vendor whose userId the subscription carries.
    """
    try:
        plan = catalog.lookup(plan_change.price_id)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    stripe_integration = StripeIntegration()
    observed_at = utcnow()
    try:
        subscription = stripe_integration.change_subscription_plan(subscription_id, plan_change.price_id)
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    user_id = (subscription.get("metadata") or {}).get("userId")
    vendor_updated = False
    if not user_id:
        logging.info(f"Subscription {subscription.get('id')} changed to {plan.plan_type} without userId metadata; "
                     f"vendor left to the daily reconciliation.")
    else:
        try:
            vendor_updated = apply_plan(db, Vendor.user_id == user_id, plan.plan_type,
                                        subscription_period_end(subscription), observed_at)
        except Exception as e:
            logging.error(f"Subscription {subscription.get('id')} changed but vendor for user {user_id} "
                          f"was not updated: {e}", exc_info=True)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
        if vendor_updated:
            logging.info(f"Subscription {subscription.get('id')}: vendor for user {user_id} moved to plan {plan.plan_type}.")
        else:
            logging.info(f"Subscription {subscription.get('id')}: no vendor updated for user {user_id} "
                         f"(missing or holding newer data).")

    return {
        "success": True,
        "message": "Subscription plan updated successfully",
        "subscription": _subscription_details(subscription),
        "subscription_plan": plan.plan_type,
        "vendorUpdated": vendor_updated,
    }
