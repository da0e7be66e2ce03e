import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from conftest import ACCESS_SECRET, REFRESH_SECRET, create_user
from parms_api.core.config import get_settings
from parms_api.core.errors import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
    WrongTokenKindError,
)
from parms_api.models.auth import RefreshToken, User
from parms_api.models.base import Base
from parms_api.models.enums import TokenKind
from parms_api.services.local_auth import digest_token
from parms_api.services.token_store import list_refresh_tokens, store_refresh_token
from parms_api.services.tokens import (
    AccessClaims,
    RefreshClaims,
    TokenService,
    decode_unverified,
    issued_before_password_change,
    token_expiry,
)


def _user(role: str = "patient") -> User:
    return User(id=uuid4(), email="alice@example.com", role=role)


def test_issue_pair_and_verify_each_kind():
    service = TokenService()
    user = _user("doctor")
    pair = service.issue_pair(user)

    access = service.verify(pair.access_token, TokenKind.ACCESS)
    refresh = service.verify(pair.refresh_token, TokenKind.REFRESH)

    assert isinstance(access, AccessClaims)
    assert access.user_id == user.id
    assert access.email == "alice@example.com"
    assert access.role == "doctor"
    assert isinstance(refresh, RefreshClaims)
    assert refresh.user_id == user.id
    assert pair.access_ttl == get_settings().access_token_ttl_seconds
    assert pair.refresh_expires_at > datetime.now(timezone.utc) + timedelta(days=6)


def test_refresh_payload_carries_only_identity():
    service = TokenService()
    pair = service.issue_pair(_user())
    payload = decode_unverified(pair.refresh_token)
    assert payload["typ"] == "refresh"
    assert "email" not in payload
    assert "role" not in payload
    assert payload["iss"] == "parms-backend"
    assert payload["aud"] == "parms-frontend"


def test_tokens_are_never_accepted_as_the_other_kind():
    service = TokenService()
    pair = service.issue_pair(_user())

    with pytest.raises(WrongTokenKindError):
        service.verify(pair.refresh_token, TokenKind.ACCESS)
    with pytest.raises(WrongTokenKindError):
        service.verify(pair.access_token, TokenKind.REFRESH)


def test_kind_claim_is_checked_after_signature():
    service = TokenService()
    now = int(datetime.now(timezone.utc).timestamp())
    forged = jwt.encode(
        {
            "sub": str(uuid4()),
            "typ": "refresh",
            "jti": "forged",
            "iss": "parms-backend",
            "aud": "parms-frontend",
            "iat": now,
            "exp": now + 60,
        },
        ACCESS_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(WrongTokenKindError):
        service.verify(forged, TokenKind.ACCESS)


def test_expired_and_garbage_tokens(monkeypatch):
    monkeypatch.setenv("PARMS_ACCESS_TOKEN_TTL_SECONDS", "-30")
    get_settings.cache_clear()
    service = TokenService()
    expired, _ = service.issue_access_token(_user())

    with pytest.raises(TokenExpiredError):
        service.verify(expired, TokenKind.ACCESS)
    with pytest.raises(InvalidTokenError):
        service.verify("not-a-token", TokenKind.ACCESS)
    with pytest.raises(InvalidTokenError):
        service.verify(jwt.encode({"sub": "x"}, "other-secret", algorithm="HS256"), TokenKind.REFRESH)


def test_token_expiry_reads_exp_claim():
    service = TokenService()
    token, expires_at = service.issue_access_token(_user())
    assert token_expiry(token) == expires_at.replace(microsecond=0)


def test_missing_or_shared_secrets_are_configuration_errors(monkeypatch):
    monkeypatch.delenv("PARMS_REFRESH_TOKEN_SECRET", raising=False)
    get_settings.cache_clear()
    with pytest.raises(ConfigurationError):
        TokenService().issue_pair(_user())

    monkeypatch.setenv("PARMS_REFRESH_TOKEN_SECRET", ACCESS_SECRET)
    get_settings.cache_clear()
    with pytest.raises(ConfigurationError):
        TokenService().verify("anything", TokenKind.ACCESS)

    monkeypatch.setenv("PARMS_REFRESH_TOKEN_SECRET", REFRESH_SECRET)
    get_settings.cache_clear()
    TokenService().issue_pair(_user())


def test_store_keeps_newest_records_and_prunes_expired(db):
    user = create_user(db, email="cap@example.com")
    expired = RefreshToken(
        user_id=user.id,
        token_hash=digest_token("stale"),
        created_at=datetime.now(timezone.utc) - timedelta(days=8),
        expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    db.add(expired)
    db.commit()

    expires_at = datetime.now(timezone.utc) + timedelta(days=7)
    for index in range(7):
        store_refresh_token(db, user.id, f"token-{index}", expires_at, device="pytest")
    db.commit()

    records = list_refresh_tokens(db, user.id)
    assert len(records) == get_settings().refresh_token_max_per_user == 5
    hashes = {record.token_hash for record in records}
    assert digest_token("stale") not in hashes
    assert digest_token("token-6") in hashes
    assert digest_token("token-0") not in hashes


def test_rotation_invalidates_old_token(db):
    service = TokenService()
    user = create_user(db, email="rotate@example.com")
    pair = service.issue_pair(user)
    store_refresh_token(db, user.id, pair.refresh_token, pair.refresh_expires_at)
    db.commit()

    rotated = service.rotate(db, pair.refresh_token, user)
    assert rotated.refresh_token != pair.refresh_token

    with pytest.raises(InvalidTokenError):
        service.rotate(db, pair.refresh_token, user)
    service.rotate(db, rotated.refresh_token, user)


def test_rotation_rejects_token_of_another_user(db):
    service = TokenService()
    owner = create_user(db, email="owner@example.com")
    other = create_user(db, email="other@example.com")
    pair = service.issue_pair(owner)
    store_refresh_token(db, owner.id, pair.refresh_token, pair.refresh_expires_at)
    db.commit()

    with pytest.raises(InvalidTokenError):
        service.rotate(db, pair.refresh_token, other)


def test_concurrent_rotation_succeeds_at_most_once(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rotation.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )

    # pysqlite 默认延迟开启事务，这里改为 BEGIN IMMEDIATE 以获得真实的写锁语义。
    @event.listens_for(engine, "connect")
    def _disable_implicit_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    service = TokenService()
    with SessionLocal() as setup:
        user = create_user(setup, email="race@example.com")
        pair = service.issue_pair(user)
        store_refresh_token(setup, user.id, pair.refresh_token, pair.refresh_expires_at)
        setup.commit()
        setup.expunge(user)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def _worker():
        with SessionLocal() as session:
            barrier.wait()
            try:
                service.rotate(session, pair.refresh_token, user)
            except InvalidTokenError:
                result = "invalid"
            else:
                result = "ok"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["invalid", "ok"]
    with SessionLocal() as check:
        assert len(list_refresh_tokens(check, user.id)) == 1
    engine.dispose()


def test_issued_before_password_change_compares_whole_seconds():
    changed_at = datetime(2026, 3, 1, 12, 0, 0, 700000, tzinfo=timezone.utc)
    issued_same_second = int(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc).timestamp())

    assert issued_before_password_change(issued_same_second - 1, changed_at) is True
    assert issued_before_password_change(issued_same_second, changed_at) is False
    assert issued_before_password_change(issued_same_second, changed_at.replace(tzinfo=None)) is False
    assert issued_before_password_change(issued_same_second, None) is False


def test_rotation_rejects_token_minted_before_password_change(db):
    service = TokenService()
    user = create_user(db, email="stale@example.com")
    pair = service.issue_pair(user)
    store_refresh_token(db, user.id, pair.refresh_token, pair.refresh_expires_at)
    user.password_changed_at = datetime.now(timezone.utc) + timedelta(seconds=5)
    db.commit()

    with pytest.raises(InvalidTokenError) as exc:
        service.rotate(db, pair.refresh_token, user)
    assert exc.value.code == "TOKEN_STALE"

    # 拒绝时不消费记录，也不写入新记录。
    hashes = [record.token_hash for record in list_refresh_tokens(db, user.id)]
    assert hashes == [digest_token(pair.refresh_token)]
