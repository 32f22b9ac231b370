"""
Command line entry points for scheduled jobs.

Run the daily reconciliation from cron with:
    vendor-billing verify-subscriptions
"""
import sys
import json
import logging
import argparse

from vendor_billing_svc.config import validate_config
from vendor_billing_svc.models.base import SessionLocal, create_tables
from vendor_billing_svc.plan_catalog import DatabasePlanCatalog, sync_plan_catalogue


def run_verify_subscriptions() -> int:
    # Imported here so that seeding does not require Stripe credentials
    from vendor_billing_svc.stripe_integration import StripeIntegration
    from vendor_billing_svc.subscription_reconciler import verify_subscriptions

    db = SessionLocal()
    try:
        summary = verify_subscriptions(db, DatabasePlanCatalog(db), StripeIntegration())
    except Exception as e:
        logging.error(f"Error verifying subscriptions: {e}", exc_info=True)
        print(json.dumps({"error": "Failed to verify subscriptions"}))
        return 1
    finally:
        db.close()
    print(json.dumps(summary.as_dict()))
    return 0


def run_seed_plans() -> int:
    create_tables()
    db = SessionLocal()
    try:
        plans = sync_plan_catalogue(db)
    finally:
        db.close()
    print(json.dumps({"message": "Plan catalog synced", "plans": len(plans)}))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Vendor billing maintenance jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("verify-subscriptions", help="Resync vendor plans against Stripe")
    subparsers.add_parser("seed-plans", help="Upsert the plan catalog")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    if args.command == "verify-subscriptions":
        validate_config(required=("STRIPE_API_KEY",))
        return run_verify_subscriptions()
    return run_seed_plans()


if __name__ == "__main__":
    sys.exit(main())
