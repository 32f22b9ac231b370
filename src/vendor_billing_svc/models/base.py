from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from vendor_billing_svc.config import get_database_url

DATABASE_URL = get_database_url()

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependency yielding a database session that is closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    # Register every model on Base.metadata before creating tables
    from vendor_billing_svc.models import subscription_plan, vendor  # noqa: F401

    Base.metadata.create_all(bind=engine)
