from sqlalchemy import Column, Integer, String

from vendor_billing_svc.models.base import Base


class SubscriptionPlan(Base):
    """
    Plan catalog row mapping a Stripe price id to an internal plan tier.
    """
    __tablename__ = 'subscription_plans'

    id = Column(Integer, primary_key=True, index=True)
    stripe_price_id = Column(String, unique=True, nullable=False, index=True)
    plan_type = Column(String, nullable=False)
    billing_interval = Column(String, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SubscriptionPlan(price={self.stripe_price_id}, plan_type={self.plan_type}, "
            f"interval={self.billing_interval})>"
        )
