from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from parms_api.core import security as security_module
from parms_api.core.config import get_settings
from parms_api.db.base import METADATA_BY_STORE
from parms_api.db.federation import ConnectionFederator
from parms_api.db.session import get_federator
from parms_api.dependencies import get_notifier
from parms_api.main import app
from parms_api.models.auth import User, UserCredential
from parms_api.services.local_auth import hash_password

ACCESS_SECRET = "unit-test-access-secret"
REFRESH_SECRET = "unit-test-refresh-secret"
PASSWORD = "StrongPassw0rd!"


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch) -> Generator[None, None, None]:
    monkeypatch.setenv("PARMS_ACCESS_TOKEN_SECRET", ACCESS_SECRET)
    monkeypatch.setenv("PARMS_REFRESH_TOKEN_SECRET", REFRESH_SECRET)
    monkeypatch.setenv("PARMS_PASSWORD_HASH_ITERATIONS", "1000")
    for name in (
        "PARMS_REDIS_URL",
        "PARMS_PRIMARY_DATABASE_URL",
        "PARMS_BILLING_DATABASE_URL",
        "PARMS_STAFF_DATABASE_URL",
        "PARMS_ACCESS_TOKEN_TTL_SECONDS",
        "PARMS_STORE_QUERY_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    security_module.reset_local_denylist()
    yield
    get_settings.cache_clear()
    security_module.reset_local_denylist()


def memory_engine():
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


@pytest.fixture
def federator() -> Generator[ConnectionFederator, None, None]:
    """三个数据源均为独立的内存库。"""
    fed = ConnectionFederator(get_settings())
    for name, metadata in METADATA_BY_STORE.items():
        engine = memory_engine()
        metadata.create_all(engine)
        fed.register_engine(name, engine)
    yield fed
    fed.close_all()


@pytest.fixture
def db(federator):
    session = federator.primary().session()
    try:
        yield session
    finally:
        session.close()


@dataclass
class RecordingNotifier:
    """记录发送的一次性令牌，便于测试后续流程。"""

    reset_tokens: dict[str, str] = field(default_factory=dict)
    verification_tokens: dict[str, str] = field(default_factory=dict)

    def send_password_reset(self, user, raw_token: str) -> None:
        self.reset_tokens[user.email] = raw_token

    def send_email_verification(self, user, raw_token: str) -> None:
        self.verification_tokens[user.email] = raw_token


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(federator, notifier) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_federator] = lambda: federator
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def create_user(
    session,
    *,
    email: str,
    role: str = "patient",
    password: str = PASSWORD,
    profile_id: UUID | None = None,
    is_active: bool = True,
) -> User:
    """直接写库创建账号，绕过注册接口。"""
    user = User(email=email, role=role, is_active=is_active, profile_id=profile_id)
    session.add(user)
    session.flush()
    session.add(
        UserCredential(
            user_id=user.id,
            password_hash=hash_password(password),
            password_updated_at=datetime.now(timezone.utc),
        )
    )
    session.commit()
    session.refresh(user)
    return user


def login(client: TestClient, email: str, password: str = PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
