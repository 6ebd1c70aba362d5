"""Shared fixtures: a fresh SQLite file per test, users, tokens and drug batches."""
import os
import tempfile
from datetime import timedelta
from decimal import Decimal

# Must be set before pharmacy.core.config is imported
_TMP_DIR = tempfile.mkdtemp(prefix="pharmacy-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'app.db')}"
os.environ["ALLOWED_HOSTS"] = "*"  # TestClient sends Host: testserver
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["TIMEZONE"] = "UTC"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from pharmacy.api.deps import get_db
from pharmacy.core.security import create_access_token, get_password_hash
from pharmacy.core.tenancy import Caller
from pharmacy.db.init_db import init_db
from pharmacy.db.session import build_engine
from pharmacy.main import app
from pharmacy.models.drug import Drug
from pharmacy.models.user import DEFAULT_PREFERENCES, User
from pharmacy.schemas.drug import DrugCreate
from pharmacy.services import inventory_service
from pharmacy.utils.clock import local_today

PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'pharmacy.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# ==============================================================================
# USERS
# ==============================================================================

def create_user(db, username, role="admin", pharmacy=None, **fields):
    user = User(
        username=username,
        email=f"{username}@example.com",
        hashed_password=get_password_hash(PASSWORD),
        pharmacy_name=pharmacy.pharmacy_name if pharmacy else f"{username.title()} Pharmacy",
        role=role,
        pharmacy_id=pharmacy.id if pharmacy else None,
        preferences=dict(DEFAULT_PREFERENCES),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(subject=str(user.id))}"}


@pytest.fixture
def admin(db):
    return create_user(db, "owner", first_name="Amina", last_name="Okafor")


@pytest.fixture
def cashier(db, admin):
    return create_user(db, "till1", role="cashier", pharmacy=admin)


@pytest.fixture
def other_admin(db):
    return create_user(db, "rival")


@pytest.fixture
def caller(admin):
    return Caller.from_user(admin)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def cashier_headers(cashier):
    return auth_headers(cashier)


# ==============================================================================
# DRUGS
# ==============================================================================

def drug_payload(**overrides):
    data = {
        "name": "Paracetamol 500mg",
        "category": "Analgesic",
        "batch_no": "PCM-001",
        "quantity": 100,
        "price": Decimal("2.50"),
        "cost_price": Decimal("1.60"),
        "expiry_date": local_today() + timedelta(days=365),
        "supplier": "MediSupply Ltd",
        "min_stock_level": 10,
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_drug(db):
    """Create a batch through the ledger so all creation rules apply."""

    def _make(caller, **overrides):
        return inventory_service.create_drug(db, caller, DrugCreate(**drug_payload(**overrides)))

    return _make


@pytest.fixture
def insert_drug(db):
    """Insert a batch directly, bypassing creation rules (e.g. already expired)."""

    def _insert(pharmacy_id, **overrides):
        data = drug_payload(**overrides)
        drug = Drug(pharmacy_id=pharmacy_id, **data)
        db.add(drug)
        db.commit()
        db.refresh(drug)
        return drug

    return _insert
