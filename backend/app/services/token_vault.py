"""Credential vault: sealed OAuth token storage and refresh.

The vault is the only component that handles plaintext tokens. A refresh is
serialized twice: by a per-user lock inside the process and by a
compare-and-swap on ``UserCredential.version`` across processes. The loser of
either race re-reads the token the winner stored instead of spending the
refresh token a second time.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet, InvalidToken
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials as OAuthCredentials
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models import UserCredential
from app.drive.exceptions import (
    InsufficientScopeError,
    NeedsReconsentError,
    NoCredentialError,
    ProviderUnavailableError,
)
from app.utils.dates import as_utc

logger = get_logger(__name__)

# Either scope lets us list the selected subtree
DRIVE_SCOPES = frozenset(
    {
        "https://www.googleapis.com/auth/drive.readonly",
        "https://www.googleapis.com/auth/drive",
    }
)

_refresh_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _get_refresh_lock(user_id: str) -> asyncio.Lock:
    lock = _refresh_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _refresh_locks[user_id] = lock
    return lock


class TokenSealer:
    """Fernet-based sealing of token strings."""

    def __init__(self, key: str | bytes | None = None):
        if key is None:
            key = settings.encryption_key
        if not key:
            key = Fernet.generate_key()
            logger.warning(
                "encryption_key_generated",
                message="Using auto-generated encryption key. Set DRIVESYNC_ENCRYPTION_KEY for persistence.",
            )
        if isinstance(key, str):
            # Fernet expects the key as base64-encoded bytes (not decoded)
            key = key.encode()
        self._fernet = Fernet(key)

    def seal(self, data: str) -> str:
        return self._fernet.encrypt(data.encode()).decode()

    def unseal(self, sealed: str) -> str:
        try:
            return self._fernet.decrypt(sealed.encode()).decode()
        except InvalidToken as e:
            # Key rotated or row tampered with; only a new consent recovers
            raise NeedsReconsentError("Stored Google token cannot be decrypted") from e


_default_sealer: TokenSealer | None = None


def get_token_sealer() -> TokenSealer:
    """Get or create the process-wide sealer."""
    global _default_sealer
    if _default_sealer is None:
        _default_sealer = TokenSealer()
    return _default_sealer


class CredentialVault:
    """Stores and hands out valid Google access tokens per user."""

    def __init__(self, db: AsyncSession, sealer: TokenSealer | None = None):
        self.db = db
        self.sealer = sealer or get_token_sealer()

    async def _load(self, user_id: str, fresh: bool = False) -> UserCredential | None:
        query = select(UserCredential).where(UserCredential.user_id == user_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def store_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None,
        scope: str,
        expires_in: int,
    ) -> UserCredential:
        """Store the token pair returned by an authorization-code exchange.

        Google omits the refresh token on repeat consents; the previously
        stored one is kept in that case.

        Raises:
            NeedsReconsentError: If no refresh token would be stored.
        """
        credential = await self._load(user_id)

        if not refresh_token and (
            credential is None or not credential.refresh_token_encrypted
        ):
            raise NeedsReconsentError(
                "Google did not return a refresh token, consent must be forced"
            )

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

        if credential is None:
            credential = UserCredential(
                user_id=user_id,
                access_token_encrypted=self.sealer.seal(access_token),
                refresh_token_encrypted=self.sealer.seal(refresh_token),
                scope=scope,
                expires_at=expires_at,
                version=1,
            )
            self.db.add(credential)
        else:
            credential.access_token_encrypted = self.sealer.seal(access_token)
            if refresh_token:
                credential.refresh_token_encrypted = self.sealer.seal(refresh_token)
            credential.scope = scope
            credential.expires_at = expires_at
            credential.version = credential.version + 1

        await self.db.flush()
        logger.info("credentials_stored", user_id=user_id, scope=scope)
        return credential

    async def ensure_valid_access_token(self, user_id: str) -> str:
        """Return an access token valid for at least the refresh margin.

        Raises:
            NoCredentialError: If the user never connected Drive.
            InsufficientScopeError: If the stored scope cannot list Drive.
            NeedsReconsentError: If the refresh token was rejected.
            ProviderUnavailableError: If Google's token endpoint is unreachable.
        """
        credential = await self._load(user_id)
        if credential is None:
            raise NoCredentialError()

        if not DRIVE_SCOPES.intersection((credential.scope or "").split()):
            raise InsufficientScopeError()

        if self._is_fresh(credential):
            return self.sealer.unseal(credential.access_token_encrypted)

        async with _get_refresh_lock(user_id):
            # Someone may have refreshed while we waited
            credential = await self._load(user_id, fresh=True)
            if credential is None:
                raise NoCredentialError()
            if self._is_fresh(credential):
                return self.sealer.unseal(credential.access_token_encrypted)

            if not credential.refresh_token_encrypted:
                logger.warning("cannot_refresh_no_refresh_token", user_id=user_id)
                raise NeedsReconsentError()

            observed_version = credential.version
            refresh_token = self.sealer.unseal(credential.refresh_token_encrypted)
            access_token, expires_at, issued_refresh_token = await self._exchange_refresh_token(
                refresh_token
            )
            values = {
                "access_token_encrypted": self.sealer.seal(access_token),
                "expires_at": expires_at,
                "version": observed_version + 1,
                "updated_at": datetime.now(timezone.utc),
            }
            if issued_refresh_token and issued_refresh_token != refresh_token:
                # Google rotated the refresh token; the old one may stop working
                values["refresh_token_encrypted"] = self.sealer.seal(issued_refresh_token)
                logger.info("refresh_token_rotated", user_id=user_id)

            result = await self.db.execute(
                update(UserCredential)
                .where(
                    UserCredential.user_id == user_id,
                    UserCredential.version == observed_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

            if result.rowcount == 0:
                # Another process won the swap; use what it stored
                logger.info("token_refresh_lost_race", user_id=user_id)
                credential = await self._load(user_id, fresh=True)
                if credential is None or not credential.access_token_encrypted:
                    raise NoCredentialError()
                return self.sealer.unseal(credential.access_token_encrypted)

            logger.info("credentials_refreshed", user_id=user_id, expires_at=expires_at.isoformat())
            return access_token

    def _is_fresh(self, credential: UserCredential) -> bool:
        expires_at = as_utc(credential.expires_at)
        if expires_at is None or not credential.access_token_encrypted:
            return False
        margin = timedelta(seconds=settings.token_refresh_margin_seconds)
        return expires_at - datetime.now(timezone.utc) >= margin

    async def _exchange_refresh_token(
        self, refresh_token: str
    ) -> tuple[str, datetime, str | None]:
        """Trade a refresh token for a new access token at Google.

        Returns:
            Tuple of (access_token, expires_at, refresh_token). The refresh
            token differs from the one passed in when Google rotated it.
        """
        creds = OAuthCredentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=settings.google_token_uri,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )

        try:
            await asyncio.to_thread(creds.refresh, Request())
        except RefreshError as e:
            if getattr(e, "retryable", False):
                raise ProviderUnavailableError(f"Token refresh failed: {e}") from e
            logger.warning("token_refresh_rejected", error=str(e))
            raise NeedsReconsentError() from e
        except TransportError as e:
            raise ProviderUnavailableError(f"Token endpoint unreachable: {e}") from e

        expires_at = as_utc(creds.expiry) or (
            datetime.now(timezone.utc) + timedelta(hours=1)
        )
        return creds.token, expires_at, creds.refresh_token

    async def disconnect(self, user_id: str) -> bool:
        """Forget the user's tokens.

        Returns:
            True if a credential was removed.
        """
        credential = await self._load(user_id)
        if credential is None:
            return False
        await self.db.delete(credential)
        await self.db.flush()
        logger.info("credentials_removed", user_id=user_id)
        return True
