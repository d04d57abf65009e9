import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.config.settings import KiwoomSettings
from core.logging import get_api_logger
from core.utils.exceptions import RequestTimeoutError, UpstreamProtocolError
from .audit import ApiCallAuditor
from .auth import TokenManager
from .rate_limiter import RequestScheduler

FAMILY_PATHS = {
    "stkinfo": "/api/dostk/stkinfo",
    "rkinfo": "/api/dostk/rkinfo",
    "chart": "/api/dostk/chart",
    "acnt": "/api/dostk/acnt",
}

ORDER_PATH = "/orders"


@dataclass
class KiwoomResponse:
    payload: Dict[str, Any]
    status_code: int
    cont_yn: str = "N"
    next_key: str = ""

    @property
    def has_next(self) -> bool:
        return self.cont_yn == "Y" and bool(self.next_key)


def is_success_code(payload: Dict[str, Any]) -> bool:
    """``return_code`` must be zero; a missing code counts as success."""
    code = payload.get("return_code", 0)
    try:
        return int(code) == 0
    except (TypeError, ValueError):
        return False


class KiwoomRestClient:
    """Authenticated, rate limited and audited REST access to Kiwoom."""

    def __init__(self, settings: KiwoomSettings, http_client: httpx.AsyncClient,
                 token_manager: TokenManager, scheduler: RequestScheduler,
                 auditor: ApiCallAuditor):
        self.settings = settings
        self.http = http_client
        self.token_manager = token_manager
        self.scheduler = scheduler
        self.auditor = auditor
        self.logger = get_api_logger("kiwoom_rest_client")

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{path}"

    async def rate_limited_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one HTTP request through the shared FIFO throttle."""
        async def send() -> httpx.Response:
            return await self.http.request(method, url, **kwargs)

        try:
            return await self.scheduler.run(send)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Kiwoom request timed out: {method} {url}", key=url,
                                      timeout_seconds=self.settings.request_timeout_seconds) from e

    async def post(self, family: str, api_id: str, body: Dict[str, Any],
                   cont_yn: Optional[str] = None, next_key: Optional[str] = None) -> KiwoomResponse:
        url = self._url(FAMILY_PATHS[family])
        token = await self.token_manager.get_access_token()
        headers = {
            "Content-Type": "application/json;charset=UTF-8",
            "authorization": f"Bearer {token}",
            "api-id": api_id,
        }
        if cont_yn:
            headers["cont-yn"] = cont_yn
        if next_key:
            headers["next-key"] = next_key

        try:
            response = await self.rate_limited_request("POST", url, headers=headers, json=body)
        except RequestTimeoutError:
            await self.auditor.record("POST", url, body, {"error": "timeout", "api_id": api_id}, None, False)
            raise
        except httpx.HTTPError as e:
            await self.auditor.record("POST", url, body, {"error": str(e), "api_id": api_id}, None, False)
            raise UpstreamProtocolError(f"Kiwoom {api_id} transport error: {e}", api_id=api_id) from e

        try:
            payload = response.json()
        except (ValueError, json.JSONDecodeError):
            payload = None

        if not isinstance(payload, dict):
            await self.auditor.record("POST", url, body, {"raw": response.text[:500]},
                                      response.status_code, False)
            raise UpstreamProtocolError(f"Kiwoom {api_id} returned a malformed payload",
                                        api_id=api_id, status_code=response.status_code)

        success = response.is_success and is_success_code(payload)
        await self.auditor.record("POST", url, body, payload, response.status_code, success)
        if not success:
            message = payload.get("return_msg") or f"HTTP {response.status_code}"
            self.logger.warning("Kiwoom request failed", api_id=api_id,
                                status_code=response.status_code, return_msg=message)
            raise UpstreamProtocolError(f"Kiwoom {api_id} failed: {message}", api_id=api_id,
                                        status_code=response.status_code, response=payload)

        return KiwoomResponse(
            payload=payload,
            status_code=response.status_code,
            cont_yn=response.headers.get("cont-yn", "N"),
            next_key=response.headers.get("next-key", ""),
        )

    async def post_order(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = self._url(ORDER_PATH)
        token = await self.token_manager.get_access_token()
        headers = {
            "Content-Type": "application/json;charset=UTF-8",
            "Authorization": f"Bearer {token}",
            "X-APP-KEY": self.settings.app_key,
            "X-APP-SECRET": self.settings.app_secret,
        }

        try:
            response = await self.rate_limited_request("POST", url, headers=headers, json=body)
        except RequestTimeoutError:
            await self.auditor.record("POST", url, body, {"error": "timeout"}, None, False)
            raise
        except httpx.HTTPError as e:
            await self.auditor.record("POST", url, body, {"error": str(e)}, None, False)
            raise UpstreamProtocolError(f"Kiwoom order transport error: {e}", api_id="order") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text[:500]}
        if not isinstance(payload, dict):
            payload = {"data": payload}

        success = response.is_success and is_success_code(payload)
        await self.auditor.record("POST", url, body, payload, response.status_code, success)
        if not success:
            raise UpstreamProtocolError(
                f"Kiwoom order failed: {payload.get('return_msg') or response.status_code}",
                api_id="order", status_code=response.status_code, response=payload,
            )
        return payload
