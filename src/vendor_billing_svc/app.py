import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vendor_billing_svc.config import seed_plan_catalog_enabled, validate_config
from vendor_billing_svc.models.base import SessionLocal, create_tables
from vendor_billing_svc.plan_catalog import sync_plan_catalogue
from vendor_billing_svc.routers import jobs_router, stripe_router, vendor_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_config()
    create_tables()
    if seed_plan_catalog_enabled():
        db = SessionLocal()
        try:
            sync_plan_catalogue(db)
        finally:
            db.close()
    logging.info("Vendor billing service started.")
    yield


app = FastAPI(title="Vendor Billing Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Stripe-Signature"],
)

# Include the Stripe router under the '/api/stripe' prefix
app.include_router(stripe_router.router, prefix="/api/stripe")
app.include_router(jobs_router.router, prefix="/api/jobs")
app.include_router(vendor_router.router, prefix="/api/vendors")
