"""
Pytest fixtures for the ED supply backend.

Provides:
- A throwaway SQLite file database per test (file, not :memory:, so worker
  threads and concurrent writers share it)
- Seeded staff profiles covering every role the rules distinguish
- InventoryService wired to an inline (not yet started) audit recorder
- FastAPI TestClient with bearer-token helpers
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from edsupply.core.audit import AuditRecorder
from edsupply.core.permissions import PermissionOracle
from edsupply.core.security import create_access_token
from edsupply.db.init_db import init_db
from edsupply.db.session import Database, RetryPolicy
from edsupply.models.enums import SupplyLocation
from edsupply.models.supply import Supply
from edsupply.models.user_profile import UserProfile
from edsupply.services.inventory_service import InventoryService
from edsupply.services.status_deriver import derive

PROFILES = [
    {"id": "admin-1", "display_name": "Dana Admin", "roles": ["admin"]},
    {"id": "manager-1", "display_name": "Sam Inventory", "roles": ["inventory_manager"]},
    {"id": "nurse-1", "display_name": "Riley Nurse", "roles": ["nurse"]},
    {"id": "nurse-cs", "display_name": "Casey Nurse", "roles": ["nurse"],
     "can_access_controlled_substances": True},
    {"id": "physician-1", "display_name": "Alex Physician", "roles": ["physician"]},
    {"id": "pharmacist-1", "display_name": "Pat Pharmacist", "roles": ["pharmacist"]},
    {"id": "staff-1", "display_name": "Morgan Staff", "roles": ["staff"]},
    {"id": "viewer-1", "display_name": "Jordan Viewer", "roles": ["viewer"]},
    {"id": "tech-1", "display_name": "Quinn Tech", "roles": [], "can_checkout_supplies": True},
]


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'edsupply-test.db'}")
    init_db(db)
    with db.session_scope() as session:
        for data in PROFILES:
            session.add(UserProfile(**data))
    yield db
    db.dispose()


@pytest.fixture
def audit(database):
    recorder = AuditRecorder(database)
    yield recorder
    recorder.stop()


@pytest.fixture
def permissions(database):
    return PermissionOracle(database)


@pytest.fixture
def service(database, permissions, audit):
    return InventoryService(
        database, permissions, audit,
        retry_policy=RetryPolicy(max_attempts=20, backoff_seconds=0.001, max_backoff_seconds=0.01),
    )


@pytest.fixture
def make_supply(database):
    """Insert a supply row directly (no ledger entry) and return its id."""

    def _make(**fields):
        values = {
            "name": "Nitrile Gloves",
            "current_quantity": 10,
            "minimum_quantity": 5,
            "critical_quantity": 2,
            "location": SupplyLocation.EMERGENCY_DEPT,
        }
        values.update(fields)
        if "status" not in values:
            values["status"] = derive(
                values["current_quantity"], values["minimum_quantity"], values["critical_quantity"]
            )
        with database.session_scope() as session:
            supply = Supply(**values)
            session.add(supply)
            session.flush()
            return supply.id

    return _make


@pytest.fixture
def load_supply(database):
    def _load(supply_id):
        with database.session_scope() as session:
            return session.get(Supply, supply_id)

    return _load


@pytest.fixture
def client(database):
    from edsupply.main import create_app

    app = create_app(database=database, start_background=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(actor_id):
        token = create_access_token(actor_id, expires_delta=timedelta(minutes=5))
        return {"Authorization": f"Bearer {token}"}

    return _headers
