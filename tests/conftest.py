from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sitesupply_core.app.db import Base
from sitesupply_core.app import models, models_supply  # noqa: F401
from sitesupply_core.app.main import app
from sitesupply_core.app.security import get_db, create_access_token
from sitesupply_core.app.services.material_request_service import MaterialRequestService
from sitesupply_core.app.services.purchase_service import PurchaseDispatchService


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def other_session(engine):
    """A second session on the same database, for interleaved writers."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


def _user(db, username, role, full_name=None):
    user = models.User(
        full_name=full_name or username.replace("_", " ").title(),
        username=username,
        email=f"{username}@example.com",
        role=role,
        is_active=True,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def users(db):
    """Directory: one user per role plus a second engineer and an outside manager."""
    ns = SimpleNamespace(
        owner=_user(db, "owner", "owner"),
        manager=_user(db, "manager", "manager"),
        engineer=_user(db, "engineer", "engineer"),
        engineer2=_user(db, "engineer2", "engineer"),
        purchase=_user(db, "purchase", "purchase_manager"),
        outsider=_user(db, "outsider", "manager"),
    )
    db.commit()
    return ns


@pytest.fixture
def project(db, users):
    project = models.Project(name="Tower A", location="Pune", state="Maharashtra", owner_id=users.owner.id)
    db.add(project)
    db.flush()
    for member in (users.manager, users.engineer, users.engineer2):
        db.add(models.ProjectMember(project_id=project.id, user_id=member.id))
    db.commit()
    return project


@pytest.fixture
def catalog(db):
    items = [
        models.MaterialCatalog(code="CEM-OPC-53", name="Cement", unit="bags", approx_price_inr=Decimal("350")),
        models.MaterialCatalog(code="SND-RIV", name="Sand", unit="tonne", approx_price_inr=None),
    ]
    db.add_all(items)
    db.commit()
    return items


@pytest.fixture
def make_request(db, users, project, catalog):
    """Create a pending cement request; keyword overrides go to create()."""
    def _make(**overrides):
        params = dict(
            project_id=project.id,
            material_id="CEM-OPC-53",
            material_name="Cement",
            quantity=50,
            unit="bags",
            reason="Slab casting, level 3",
        )
        actor = overrides.pop("actor", users.engineer)
        params.update(overrides)
        return MaterialRequestService.create(db, actor, **params)
    return _make


@pytest.fixture
def approved_request(db, users, make_request):
    request = make_request()
    return MaterialRequestService.approve(db, request.id, users.manager)


@pytest.fixture
def sent_history(db, users, approved_request):
    return PurchaseDispatchService.send(db, approved_request.id, users.purchase, gst_rate=18)


EVIDENCE = dict(
    proof_photo_url="https://cdn.example.com/grn/1.jpg",
    latitude=18.5204,
    longitude=73.8567,
    geo_location="Hinjewadi Phase 1, Pune",
)


@pytest.fixture
def evidence():
    return dict(EVIDENCE)


@pytest.fixture
def client(db):
    """TestClient sharing the test session. Startup is not run, tables already exist."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.username, 'role': user.role})}"}
    return _headers
