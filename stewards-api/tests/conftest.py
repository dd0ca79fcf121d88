import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SESSION_BACKEND"] = "memory"
os.environ["WASSENGER_API_KEY"] = "test-key"
os.environ["WASSENGER_WEBHOOK_SECRET"] = "test-secret"
os.environ["ADMIN_TOKEN"] = "admin-token"

from datetime import datetime, timezone  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from stewards.database import Base  # noqa: E402
from stewards.models import (  # noqa: E402
    ChecklistTask,
    Contract,
    ContractChecklist,
    ContractChecklistItem,
    Inspector,
    WorkOrder,
    WorkOrderInspector,
)
from stewards.services.location_service import checklist_item_cache  # noqa: E402
from stewards.services.session_store import InMemorySessionStore  # noqa: E402


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def db():
    """Real SQLAlchemy session on a shared in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture(autouse=True)
def clear_checklist_cache():
    checklist_item_cache.clear()
    yield
    checklist_item_cache.clear()


@pytest.fixture
def inspection(db):
    """One inspector with a started job: Kitchen (2 tasks) and Living Room (1 task)."""
    now = datetime.now(timezone.utc)
    inspector = Inspector(id="insp-x", name="Xavier", mobile_phone="+6591234567", status="ACTIVE")
    other = Inspector(id="insp-y", name="Yuki", mobile_phone="+6598765432", status="ACTIVE")
    contract = Contract(
        id="contract-1",
        customer_name="Tan Family",
        property_address="12 Orchard Road",
        postal_code="238800",
    )
    checklist = ContractChecklist(id="checklist-1", contract_id=contract.id)
    kitchen = ContractChecklistItem(id="item-kitchen", contract_checklist_id=checklist.id, name="Kitchen", order=1)
    living = ContractChecklistItem(id="item-living", contract_checklist_id=checklist.id, name="Living Room", order=2)
    work_order = WorkOrder(
        id="wo-1",
        contract_id=contract.id,
        status="STARTED",
        scheduled_start=now,
        actual_start=now,
    )
    tasks = [
        ChecklistTask(id="task-walls", item_id=kitchen.id, name="Walls", order=1),
        ChecklistTask(id="task-sink", item_id=kitchen.id, name="Sink", order=2),
        ChecklistTask(id="task-floor", item_id=living.id, name="Floor", order=1),
    ]
    db.add_all([inspector, other, contract, checklist, kitchen, living, work_order, *tasks])
    db.add_all(
        [
            WorkOrderInspector(work_order_id=work_order.id, inspector_id=inspector.id, position=0),
            WorkOrderInspector(work_order_id=work_order.id, inspector_id=other.id, position=1),
        ]
    )
    db.commit()
    return SimpleNamespace(
        inspector=inspector,
        other=other,
        contract=contract,
        work_order=work_order,
        kitchen=kitchen,
        living=living,
        tasks=tasks,
    )
