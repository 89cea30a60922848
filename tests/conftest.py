# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-messaging")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", str(Path(tempfile.gettempdir()) / "tibabu-test-uploads"))

from tibabu_connect.api.v1.dependencies import (  # noqa: E402
    get_attachment_store_dep,
    get_fanout_router_dep,
    get_session_factory_dep,
)
from tibabu_connect.core.security import create_access_token  # noqa: E402
from tibabu_connect.db.session import Base  # noqa: E402
from tibabu_connect.db.session import get_db as app_get_session  # noqa: E402
from tibabu_connect.main import app as fastapi_app  # noqa: E402
from tibabu_connect.models import DoctorProfile, Message, User  # noqa: E402
from tibabu_connect.models.user import ROLE_DOCTOR, ROLE_PATIENT  # noqa: E402
from tibabu_connect.services.attachments import AttachmentStore  # noqa: E402
from tibabu_connect.services.fanout import FanOutRouter  # noqa: E402

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def attachment_store(tmp_path: Path) -> AttachmentStore:
    """Attachment store writing under the test's temporary directory."""
    return AttachmentStore(root=tmp_path / "uploads", url_prefix="/uploads", max_bytes=1024)


@pytest.fixture()
def fanout() -> FanOutRouter:
    """A fan-out router with an empty registry for each test."""
    return FanOutRouter()


@pytest.fixture(autouse=True)
def override_collaborators(
    app: FastAPI,
    attachment_store: AttachmentStore,
    fanout: FanOutRouter,
    db_session: Session,
) -> Iterator[None]:
    @contextmanager
    def _shared_session() -> Iterator[Session]:
        yield db_session

    overrides: dict[Callable[..., Any], Callable[[], Any]] = {
        get_attachment_store_dep: lambda: attachment_store,
        get_fanout_router_dep: lambda: fanout,
        get_session_factory_dep: lambda: _shared_session,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def make_user(
    db_session: Session,
    name: str,
    email: str,
    role: str = ROLE_PATIENT,
    **fields: Any,
) -> User:
    user = User(name=name, email=email, role=role, **fields)
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture()
def patient(db_session: Session) -> User:
    """A patient account."""
    return make_user(db_session, "Amina Otieno", "amina@example.com")


@pytest.fixture()
def doctor(db_session: Session) -> User:
    """A verified doctor with a cardiology profile."""
    user = make_user(db_session, "Dr. Baraka Mwangi", "baraka@example.com", role=ROLE_DOCTOR)
    db_session.add(
        DoctorProfile(
            user_id=user.id,
            specialty="Cardiology",
            license_number="KMP-1001",
            consultation_fee=2500.0,
            is_verified=True,
            is_available=True,
        )
    )
    db_session.flush()
    db_session.refresh(user)
    return user


@pytest.fixture()
def other_patient(db_session: Session) -> User:
    """A second patient, unrelated to most conversations."""
    return make_user(db_session, "Chege Kamau", "chege@example.com")


@pytest.fixture()
def patient_headers(patient: User) -> dict[str, str]:
    return auth_headers(patient)


@pytest.fixture()
def doctor_headers(doctor: User) -> dict[str, str]:
    return auth_headers(doctor)


@pytest.fixture()
def other_headers(other_patient: User) -> dict[str, str]:
    return auth_headers(other_patient)


@pytest.fixture()
def send(client: TestClient) -> Callable[..., Any]:
    """Post a text message through the API and return the response."""

    def _send(headers: dict[str, str], receiver_id: str, content: str = "Hello", **extra: Any):
        data = {"receiver_id": receiver_id, "content": content}
        extra_headers = extra.pop("extra_headers", {})
        data.update(extra)
        return client.post(
            "/api/v1/messages/send",
            data=data,
            headers={**headers, **extra_headers},
        )

    return _send


@pytest.fixture()
def message_count(db_session: Session) -> Callable[[], int]:
    return lambda: db_session.query(Message).count()


@pytest.fixture()
def user_factory(db_session: Session) -> Callable[..., User]:
    """Create users beyond the standard fixtures."""

    def _make(name: str, email: str, role: str = ROLE_PATIENT, **fields: Any) -> User:
        return make_user(db_session, name, email, role, **fields)

    return _make
