import json
from typing import Any, Optional

from core.logging import get_audit_logger, redact_mapping
from core.logging.enhanced_logging import DEFAULT_REDACT_KEYS
from core.storage.base import TradingStore
from core.trading.models import ApiCallRecord

MASK = "***"


def redact_secrets(body: Any) -> Any:
    """Mask credentials and tokens in a request/response body before it is stored."""
    return redact_mapping(body, DEFAULT_REDACT_KEYS, replacement=MASK)


class ApiCallAuditor:
    """Append-only API call audit trail.

    Persistence failures are logged and swallowed: auditing never blocks trading.
    """

    def __init__(self, store: Optional[TradingStore], provider: str = "kiwoom"):
        self.store = store
        self.provider = provider
        self.logger = get_audit_logger("api_call_auditor")

    async def record(self, method: str, endpoint: str, request_body: Any, response_body: Any,
                     status_code: Optional[int], success: bool) -> None:
        request_body = redact_secrets(request_body)
        response_body = redact_secrets(response_body)
        record = ApiCallRecord(
            provider=self.provider,
            endpoint=endpoint,
            method=method,
            request_body=request_body,
            response_body=response_body,
            status_code=status_code,
            success=success,
            error_message=None if success else json.dumps(response_body, default=str, ensure_ascii=False),
        )
        if self.store is None:
            return
        try:
            await self.store.append_api_call(record)
        except Exception as e:
            self.logger.warning("Failed to save API call log",
                                endpoint=endpoint, method=method, error=str(e))
