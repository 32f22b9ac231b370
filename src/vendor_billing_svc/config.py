import os
import logging
from typing import Optional

DEFAULT_DATABASE_URL = "sqlite:///./vendor_billing.db"
DEFAULT_STRIPE_REQUEST_TIMEOUT = 10.0

# Variables the service refuses to start without
REQUIRED_ENV_VARS = ("STRIPE_API_KEY", "STRIPE_ENDPOINT_SECRET")


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def get_endpoint_secret() -> Optional[str]:
    return os.getenv("STRIPE_ENDPOINT_SECRET")


def get_app_base_url() -> Optional[str]:
    return os.getenv("APP_BASE_URL")


def get_scheduler_token() -> Optional[str]:
    # Shared secret the daily scheduler presents as a Bearer token
    return os.getenv("SCHEDULER_TOKEN")


def get_request_timeout() -> float:
    """
    Timeout in seconds applied to every call made to the Stripe API.

    :raises EnvironmentError: if STRIPE_REQUEST_TIMEOUT is not a positive number.
    """
    raw_value = os.getenv("STRIPE_REQUEST_TIMEOUT")
    if not raw_value:
        return DEFAULT_STRIPE_REQUEST_TIMEOUT
    try:
        timeout = float(raw_value)
    except ValueError:
        raise EnvironmentError(f"STRIPE_REQUEST_TIMEOUT must be a number, got {raw_value!r}.")
    if timeout <= 0:
        raise EnvironmentError("STRIPE_REQUEST_TIMEOUT must be greater than zero.")
    return timeout


def seed_plan_catalog_enabled() -> bool:
    return os.getenv("SEED_PLAN_CATALOG", "false").lower() in ("1", "true", "yes")


def validate_config(required=REQUIRED_ENV_VARS) -> None:
    """
    Fail fast when required configuration is missing.

    :raises EnvironmentError: listing every missing variable.
    """
    missing = [name for name in required if not os.getenv(name)]
    if missing:
        error_msg = f"Missing required environment variables: {', '.join(missing)}"
        logging.error(error_msg)
        raise EnvironmentError(error_msg)
    get_request_timeout()
