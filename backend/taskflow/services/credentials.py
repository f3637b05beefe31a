"""Access-token lookup for linked OAuth accounts."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskflow.db.models.oauth_account import OAuthAccount
from taskflow.db.types import as_utc

logger = logging.getLogger(__name__)


class CredentialProvider:
    """Read access tokens stored by the auth layer.

    Refreshing and encrypting tokens belongs to that layer; an expired or
    missing token is reported as None.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_access_token(self, user_id: str, provider_id: str) -> Optional[str]:
        account = (
            self.db.query(OAuthAccount)
            .filter(OAuthAccount.user_id == user_id, OAuthAccount.provider_id == provider_id)
            .one_or_none()
        )
        if account is None:
            logger.info("No %s account linked for user %s", provider_id, user_id)
            return None
        token = (account.access_token or "").strip()
        if not token:
            return None
        expires_at = as_utc(account.expires_at)
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            logger.info("Stored %s token for user %s expired at %s", provider_id, user_id, expires_at)
            return None
        return token


def store_access_token(
    db: Session,
    *,
    user_id: str,
    provider_id: str,
    access_token: str,
    scope: str | None = None,
    expires_at: datetime | None = None,
) -> OAuthAccount:
    """Create or replace the token for one (user, provider) pair."""
    account = (
        db.query(OAuthAccount)
        .filter(OAuthAccount.user_id == user_id, OAuthAccount.provider_id == provider_id)
        .one_or_none()
    )
    if account is None:
        account = OAuthAccount(user_id=user_id, provider_id=provider_id, access_token=access_token)
        db.add(account)
    account.access_token = access_token
    account.scope = scope
    account.expires_at = expires_at
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(account)
    return account
