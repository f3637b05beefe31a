from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskflow.db.base import Base
from taskflow.db import models  # noqa: F401  ensure models are loaded
from taskflow.services.credentials import CredentialProvider, store_access_token


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


def test_missing_account_yields_none(db) -> None:
    assert CredentialProvider(db).get_access_token("user-1", "google") is None


def test_valid_token_is_returned(db) -> None:
    store_access_token(
        db,
        user_id="user-1",
        provider_id="google",
        access_token="tok",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    assert CredentialProvider(db).get_access_token("user-1", "google") == "tok"
    assert CredentialProvider(db).get_access_token("user-1", "github") is None


def test_expired_token_yields_none(db) -> None:
    store_access_token(
        db,
        user_id="user-1",
        provider_id="google",
        access_token="tok",
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )

    assert CredentialProvider(db).get_access_token("user-1", "google") is None


def test_store_replaces_existing_token(db) -> None:
    store_access_token(db, user_id="user-1", provider_id="google", access_token="old")
    account = store_access_token(db, user_id="user-1", provider_id="google", access_token="new", scope="calendar")

    assert account.scope == "calendar"
    assert CredentialProvider(db).get_access_token("user-1", "google") == "new"
