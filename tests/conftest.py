import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./hms_billing_test.db")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session, sessionmaker

from hms_billing.db.base import Base
from hms_billing.db.session import make_engine
from hms_billing.models import billing  # noqa: F401
from hms_billing.services.billing_account_service import open_account
from hms_billing.services.billing_items import add_item

ACTOR = 7
APPROVER = 9


@pytest.fixture()
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, future=True)


@pytest.fixture()
def db(session_factory) -> Session:
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def account(db):
    return open_account(db, encounter_id=101, patient_id=55, actor_id=ACTOR)


@pytest.fixture()
def charge(db, account):
    """Add a one-unit charge to the fixture account; returns the item id."""

    def _charge(amount, item_type="lab", description="CBC", **kw):
        return add_item(
            db,
            account.encounter_id,
            item_type,
            description,
            kw.pop("quantity", 1),
            Decimal(str(amount)),
            actor_id=ACTOR,
            **kw,
        )

    return _charge
