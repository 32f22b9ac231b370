import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse

from vendor_billing_svc.config import get_scheduler_token
from vendor_billing_svc.models.base import get_db
from vendor_billing_svc.plan_catalog import get_plan_catalog
from vendor_billing_svc.stripe_integration import StripeIntegration
from vendor_billing_svc.subscription_reconciler import verify_subscriptions

router = APIRouter()


def require_scheduler_token(authorization: Optional[str] = Header(None)) -> None:
    """
    Only the scheduler holding SCHEDULER_TOKEN may trigger jobs.

    :raises HTTPException: 503 when no token is configured, 401 when the
        Authorization header is missing or does not carry the token.
    """
    expected_token = get_scheduler_token()
    if not expected_token:
        logging.error("Scheduler token not configured; rejecting job trigger.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Scheduler token not configured")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), expected_token.encode()):
        logging.warning("Rejected job trigger with missing or invalid scheduler token.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid scheduler token",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.post("/verify-subscriptions", status_code=200, dependencies=[Depends(require_scheduler_token)])
def run_verify_subscriptions(db=Depends(get_db), catalog=Depends(get_plan_catalog)):
    try:
        summary = verify_subscriptions(db, catalog, StripeIntegration())
    except Exception as e:
        logging.error(f"Error verifying subscriptions: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to verify subscriptions"},
        )
    return summary.as_dict()
