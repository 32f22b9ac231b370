import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from vendor_billing_svc.models.base import get_db
from vendor_billing_svc.models.vendor import Vendor
from vendor_billing_svc.vendor_subscription import as_utc, utcnow

router = APIRouter()


class VendorSubscriptionStatus(BaseModel):
    user_id: str
    subscription_plan: Optional[str] = None
    subscription_end_date: Optional[datetime.datetime] = None
    plan_active: bool


@router.get("/{user_id}/subscription", response_model=VendorSubscriptionStatus)
def get_vendor_subscription(user_id: str, db=Depends(get_db)):
    vendor = db.query(Vendor).filter(Vendor.user_id == user_id).one_or_none()
    if vendor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vendor not found")

    end_date = as_utc(vendor.subscription_end_date)
    plan_active = vendor.subscription_plan is not None and end_date is not None and end_date > utcnow()
    return VendorSubscriptionStatus(
        user_id=vendor.user_id,
        subscription_plan=vendor.subscription_plan,
        subscription_end_date=end_date,
        plan_active=plan_active,
    )
