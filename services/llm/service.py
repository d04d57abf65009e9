import json
import re
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import openai
from openai import AsyncOpenAI

from core.config.settings import LLMSettings
from core.logging import get_api_logger, get_audit_logger
from core.storage.base import TradingStore
from core.trading.models import LlmCallRecord

T = TypeVar("T")

# Gemini's OpenAI-compatible endpoint
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

_FENCE = re.compile(r"^```[a-zA-Z]*\s*$", re.MULTILINE)


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


class LLMService:
    """
    LLM collaborator. ``generate_text`` and ``generate_json`` never raise.

    The configured model is tried first, then the fallback models. A model
    answering 404 is skipped for ``model_unavailable_hours``; a 429 pauses
    every call for ``quota_pause_minutes``. Every call is audit logged.
    """

    def __init__(self, settings: LLMSettings, store: Optional[TradingStore] = None,
                 client: Optional[Any] = None, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.store = store
        self._client = client
        self._clock = clock
        self._model_unavailable_until: Dict[str, float] = {}
        self._quota_blocked_until = 0.0
        self.logger = get_api_logger("llm_service")
        self.audit_logger = get_audit_logger("llm_call_log")

    @property
    def client(self):
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.base_url or DEFAULT_BASE_URL,
                timeout=self.settings.timeout_seconds,
                max_retries=0,
            )
        return self._client

    @property
    def quota_blocked(self) -> bool:
        return self._clock() < self._quota_blocked_until

    def models_to_try(self) -> List[str]:
        configured = self.settings.model
        candidates = [configured] + [model for model in self.settings.fallback_models if model != configured]
        now = self._clock()
        return [model for model in candidates if now >= self._model_unavailable_until.get(model, 0.0)]

    async def generate_json(self, prompt: str, fallback: T) -> T:
        text = await self.generate_text(prompt)
        if not text:
            return fallback
        try:
            return json.loads(strip_code_fences(text))
        except ValueError as e:
            self.logger.warning("Failed to parse LLM JSON response", error=str(e))
            return fallback

    async def generate_text(self, prompt: str) -> str:
        if self.quota_blocked:
            return ""
        if not self.settings.api_key:
            self.logger.warning("LLM__API_KEY is missing, skipping LLM call")
            return ""

        configured = self.settings.model
        for model in self.models_to_try():
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                )
            except openai.APIStatusError as e:
                await self._log_call(model, prompt, None, None, False, e.status_code, str(e))
                self.logger.warning("LLM request failed", model=model, status_code=e.status_code,
                                    error=str(e)[:300])
                if e.status_code == 404:
                    self._model_unavailable_until[model] = (
                        self._clock() + self.settings.model_unavailable_hours * 3600
                    )
                    continue
                if e.status_code == 429:
                    self._quota_blocked_until = self._clock() + self.settings.quota_pause_minutes * 60
                    self.logger.warning("LLM quota exceeded, calls paused",
                                        minutes=self.settings.quota_pause_minutes)
                return ""
            except openai.OpenAIError as e:
                await self._log_call(model, prompt, None, None, False, None, str(e))
                self.logger.warning("LLM request error", model=model, error=str(e))
                return ""

            output = ""
            if response.choices:
                output = response.choices[0].message.content or ""
            await self._log_call(model, prompt, output, getattr(response, "usage", None), True, 200, None)
            if model != configured:
                self.logger.warning("LLM model fallback in use", configured=configured, active=model)
            self._quota_blocked_until = 0.0
            return output
        return ""

    async def _log_call(self, model: str, prompt: str, output: Optional[str], usage: Any,
                        success: bool, status_code: Optional[int], error_message: Optional[str]) -> None:
        record = LlmCallRecord(
            model=model,
            input_text=prompt,
            output_text=output,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            total_tokens=getattr(usage, "total_tokens", None),
            success=success,
            status_code=status_code,
            error_message=error_message,
        )
        if self.store is None:
            return
        try:
            await self.store.append_llm_call(record)
        except Exception as e:
            self.audit_logger.warning("Failed to save LLM call log", model=model, error=str(e))
