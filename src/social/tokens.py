"""Access-token collaborator for social accounts.

Tokens are stored encrypted on the account row. ``get_access_token``
returns a usable token or ``None``; tokens close to expiry are refreshed
first, guarded by a Redis lock so concurrent posters refresh once.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import httpx
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.logger import get_logger
from src.orchestrator.locks import RedisLockManager
from src.storage.models import SocialAccount
from src.storage.security import decrypt_token, encrypt_token


TOKEN_REFRESH_LOCK_NAMESPACE = "token_refresh"

logger = get_logger("viral.social.tokens")


class TokenRefreshError(RuntimeError):
    """Raised when a platform refuses or garbles a token refresh."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_expiration(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_expires_in(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _safe_decrypt(ciphertext: Optional[str]) -> Optional[str]:
    if not ciphertext:
        return None
    try:
        token = decrypt_token(ciphertext)
    except ValueError:
        return None
    normalized = token.strip()
    return normalized or None


def store_account_tokens(
    session: Session,
    account: SocialAccount,
    *,
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_in: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SocialAccount:
    current = now or _utc_now()
    account.access_token_encrypted = encrypt_token(access_token.strip())
    if refresh_token:
        account.refresh_token_encrypted = encrypt_token(refresh_token.strip())
    account.token_expires_at = current + timedelta(seconds=expires_in) if expires_in else None
    account.updated_at = current
    session.commit()
    return account


class TokenRefresher(Protocol):
    def refresh(self, *, platform: str, access_token: Optional[str], refresh_token: str) -> Mapping[str, Any]:
        raise NotImplementedError


class HttpTokenRefresher(TokenRefresher):
    """Refresh-token grants for TikTok, YouTube (Google OAuth) and Instagram."""

    def __init__(self, *, timeout_seconds: int = 30, client: Optional[httpx.Client] = None) -> None:
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return self._client.request(method, url, **kwargs)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.request(method, url, **kwargs)

    def _request_for(self, platform: str, access_token: Optional[str], refresh_token: str) -> Dict[str, Any]:
        settings = get_settings()
        if platform == "tiktok":
            return {
                "method": "POST",
                "url": f"{settings.tiktok_api_base_url.rstrip('/')}/oauth/token/",
                "data": {
                    "client_key": settings.tiktok_client_key,
                    "client_secret": settings.tiktok_client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
            }
        if platform == "youtube":
            return {
                "method": "POST",
                "url": settings.youtube_token_url,
                "data": {
                    "client_id": settings.youtube_client_id,
                    "client_secret": settings.youtube_client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
            }
        if platform == "instagram":
            # Long-lived Instagram tokens refresh themselves; the refresh token is the current token.
            return {
                "method": "GET",
                "url": settings.instagram_token_refresh_url,
                "params": {"grant_type": "ig_refresh_token", "access_token": access_token or refresh_token},
            }
        raise TokenRefreshError(f"token_refresh_unsupported_platform platform={platform}")

    def refresh(self, *, platform: str, access_token: Optional[str], refresh_token: str) -> Mapping[str, Any]:
        request = self._request_for(platform, access_token, refresh_token)
        method = request.pop("method")
        url = request.pop("url")
        response = self._send(method, url, **request)
        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise TokenRefreshError(f"token_refresh_failed platform={platform} status={response.status_code} detail={detail}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError(f"token_refresh_invalid_json platform={platform}") from exc
        if not isinstance(payload, dict):
            raise TokenRefreshError(f"token_refresh_unexpected_payload platform={platform}")
        # TikTok wraps the grant in a "data" object on some API versions.
        if isinstance(payload.get("data"), dict) and "access_token" in payload["data"]:
            return payload["data"]
        return payload


class AccessTokenProvider:
    def __init__(
        self,
        *,
        refresher: Optional[TokenRefresher] = None,
        redis_client: Optional[Redis] = None,
        refresh_skew_seconds: Optional[int] = None,
        lock_ttl_seconds: int = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = get_settings()
        self._refresher = refresher or HttpTokenRefresher(timeout_seconds=settings.platform_api_timeout_seconds)
        self._lock_manager = (
            RedisLockManager(redis_client, namespace=TOKEN_REFRESH_LOCK_NAMESPACE, ttl_seconds=lock_ttl_seconds)
            if redis_client is not None
            else None
        )
        self._refresh_skew_seconds = (
            refresh_skew_seconds if refresh_skew_seconds is not None else settings.account_token_refresh_skew_seconds
        )
        self._clock = clock or _utc_now

    def get_access_token(self, session: Session, account_id: str) -> Optional[str]:
        account = session.get(SocialAccount, account_id)
        if account is None or not account.is_active:
            return None

        access_token = _safe_decrypt(account.access_token_encrypted)
        expires_at = _normalize_expiration(account.token_expires_at)
        now = self._clock()
        if access_token is not None and (
            expires_at is None or expires_at > now + timedelta(seconds=max(0, self._refresh_skew_seconds))
        ):
            return access_token

        refreshed = self._refresh(session, account, access_token)
        if refreshed is not None:
            return refreshed
        if access_token is not None and expires_at is not None and expires_at > now:
            return access_token
        return None

    def _refresh(self, session: Session, account: SocialAccount, access_token: Optional[str]) -> Optional[str]:
        refresh_token = _safe_decrypt(account.refresh_token_encrypted)
        if refresh_token is None:
            logger.info("account_token_refresh_skipped_no_refresh_token", account_id=account.id)
            return None

        handle = None
        if self._lock_manager is not None:
            try:
                handle = self._lock_manager.acquire(account.id)
            except RedisError as exc:
                logger.warning("account_token_refresh_lock_unavailable", account_id=account.id, error=str(exc))
            else:
                if handle is None:
                    # Another worker is refreshing; use whatever it has stored by now.
                    session.expire(account)
                    latest = _safe_decrypt(account.access_token_encrypted)
                    latest_expiry = _normalize_expiration(account.token_expires_at)
                    if latest is not None and (latest_expiry is None or latest_expiry > self._clock()):
                        return latest
                    return None

        try:
            payload = self._refresher.refresh(
                platform=account.platform,
                access_token=access_token,
                refresh_token=refresh_token,
            )
            new_access = payload.get("access_token")
            if not isinstance(new_access, str) or not new_access.strip():
                raise TokenRefreshError("token_refresh_missing_access_token")
            rotated = payload.get("refresh_token")
            store_account_tokens(
                session,
                account,
                access_token=new_access,
                refresh_token=rotated if isinstance(rotated, str) and rotated.strip() else refresh_token,
                expires_in=_coerce_expires_in(payload.get("expires_in")),
                now=self._clock(),
            )
            logger.info("account_token_refreshed", account_id=account.id, platform=account.platform)
            return new_access.strip()
        except (TokenRefreshError, httpx.HTTPError) as exc:
            session.rollback()
            logger.warning("account_token_refresh_failed", account_id=account.id, error=str(exc))
            return None
        finally:
            if handle is not None:
                try:
                    handle.release()
                except RedisError:
                    logger.warning("account_token_refresh_lock_release_failed", account_id=account.id)
