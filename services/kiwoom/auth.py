"""Kiwoom OAuth token lifecycle: cache, single-flight issue, expiry resolution."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional
from zoneinfo import ZoneInfo

import httpx

from core.config.settings import KiwoomSettings
from core.logging import get_api_logger
from core.utils.exceptions import AuthError, RequestTimeoutError
from .audit import ApiCallAuditor, MASK, redact_secrets
from .fields import to_number
from .rate_limiter import RequestScheduler

KST = ZoneInfo("Asia/Seoul")
REFRESH_MARGIN = timedelta(seconds=60)
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=50)


def _parse_expires_dt(value: str) -> Optional[datetime]:
    value = value.strip()
    if not value:
        return None
    # Kiwoom issues compact local timestamps, e.g. 20250101153000
    if value.isdigit() and len(value) == 14:
        return datetime.strptime(value, "%Y%m%d%H%M%S").replace(tzinfo=KST)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=KST)
    return parsed


def resolve_token_expiry(payload: Mapping[str, Any], now: datetime) -> datetime:
    """Explicit ``expires_dt`` first, then relative ``expires_in`` seconds, else 50 minutes."""
    expires_dt = payload.get("expires_dt")
    if isinstance(expires_dt, str):
        parsed = _parse_expires_dt(expires_dt)
        if parsed is not None:
            return parsed

    expires_in = payload.get("expires_in")
    if expires_in is not None and not isinstance(expires_in, bool):
        seconds = to_number(expires_in)
        if seconds > 0:
            return now + timedelta(seconds=seconds)

    return now + DEFAULT_TOKEN_LIFETIME


class CachedToken:
    __slots__ = ("access_token", "expires_at")

    def __init__(self, access_token: str, expires_at: datetime):
        self.access_token = access_token
        self.expires_at = expires_at

    def is_usable(self, now: datetime) -> bool:
        return self.expires_at - REFRESH_MARGIN > now


class TokenManager:
    """Caches the access token and shares one in-flight issue among concurrent callers."""

    def __init__(self, settings: KiwoomSettings, http_client: httpx.AsyncClient,
                 scheduler: RequestScheduler, auditor: ApiCallAuditor,
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings
        self.http = http_client
        self.scheduler = scheduler
        self.auditor = auditor
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cached: Optional[CachedToken] = None
        self._inflight: Optional[asyncio.Task] = None
        self.logger = get_api_logger("kiwoom_token_manager")

    @property
    def token_endpoint(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/oauth2/token"

    def invalidate(self) -> None:
        self._cached = None

    async def get_access_token(self) -> str:
        if self._cached is not None and self._cached.is_usable(self._clock()):
            return self._cached.access_token

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._issue_token())
        # Shield so one cancelled caller does not cancel the shared issue
        return await asyncio.shield(self._inflight)

    async def _issue_token(self) -> str:
        try:
            return await self._request_token()
        finally:
            self._inflight = None

    async def _request_token(self) -> str:
        app_key = self.settings.app_key
        app_secret = self.settings.app_secret
        if not app_key or not app_secret:
            raise AuthError("KIWOOM__APP_KEY or KIWOOM__APP_SECRET is missing while KIWOOM__MOCK=false")

        endpoint = self.token_endpoint
        request_body = {
            "grant_type": "client_credentials",
            "appkey": app_key,
            "secretkey": app_secret,
        }
        logged_request = {**request_body, "appkey": MASK, "secretkey": MASK}

        async def send() -> httpx.Response:
            return await self.http.post(
                endpoint,
                headers={"Content-Type": "application/json;charset=UTF-8", "api-id": "au10001"},
                json=request_body,
            )

        try:
            response = await self.scheduler.run(send)
        except httpx.TimeoutException as e:
            await self.auditor.record("POST", endpoint, logged_request, {"error": str(e)}, None, False)
            raise RequestTimeoutError("Kiwoom token request timed out", key="au10001",
                                      timeout_seconds=self.settings.request_timeout_seconds) from e
        except httpx.HTTPError as e:
            await self.auditor.record("POST", endpoint, logged_request, {"error": str(e)}, None, False)
            raise AuthError(f"Kiwoom token request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        logged_response = redact_secrets(payload)

        if not response.is_success:
            await self.auditor.record("POST", endpoint, logged_request, logged_response,
                                      response.status_code, False)
            raise AuthError(f"Kiwoom token request failed: {response.status_code}",
                            details={"status_code": response.status_code})

        access_token = payload.get("access_token") or payload.get("token")
        if not access_token:
            await self.auditor.record("POST", endpoint, logged_request, logged_response,
                                      response.status_code, False)
            raise AuthError("Kiwoom token response does not contain access token")

        expires_at = resolve_token_expiry(payload, self._clock())
        self._cached = CachedToken(str(access_token), expires_at)
        await self.auditor.record("POST", endpoint, logged_request, logged_response,
                                  response.status_code, True)
        self.logger.info("Kiwoom access token issued", expires_at=expires_at.isoformat())
        return self._cached.access_token
