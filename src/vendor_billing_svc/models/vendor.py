from sqlalchemy import Column, DateTime, Integer, String

from vendor_billing_svc.models.base import Base


class Vendor(Base):
    """
    Vendor business account holding the paid listing plan synced from Stripe.

    subscription_plan and subscription_end_date are either both set or both null.
    subscription_synced_at records when the provider data behind the current
    values was observed, and guards against stale overwrites.
    """
    __tablename__ = 'vendors'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    business_name = Column(String, nullable=True)
    subscription_plan = Column(String, nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    subscription_synced_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Vendor(id={self.id}, user_id={self.user_id}, plan={self.subscription_plan}, "
            f"end_date={self.subscription_end_date})>"
        )
