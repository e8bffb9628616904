"""Single model round-trip with validation, bookkeeping and usage statistics."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

from ai_assistant.ai.json_utils import extract_json_string
from ai_assistant.ai.provider import ModelProvider, ModelResponse
from ai_assistant.errors import ValidationError
from ai_assistant.log import get_logger
from ai_assistant.storage.value_store import ValueStore

logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.6

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9-_]")


def to_alphanumeric(text: str) -> str:
    return _NON_ALNUM.sub("", text)


def dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


class ModelRequester:
    """Sends one request to the configured model and records what happened.

    Request/response bodies, status and errors are mirrored into
    ``models.<model>.*`` and usage counters into both the model and the
    ``assistant.statistics`` branch.
    """

    def __init__(self, provider: ModelProvider, store: ValueStore, model: str):
        self._provider = provider
        self._store = store
        self._model = model

    @property
    def model_prefix(self) -> str:
        return f"models.{to_alphanumeric(self._model)}"

    def validate_request(
        self,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str],
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> tuple[Optional[str], int, float]:
        """Check required fields and fill defaults. Raises ValidationError."""
        if not self._model:
            raise ValidationError("No model configured")
        if not messages:
            raise ValidationError("No messages provided")
        if not self._provider.api_token_check():
            raise ValidationError(f"No API token set for provider {self._provider.name}")
        if not max_tokens:
            logger.debug("request_default_max_tokens", value=DEFAULT_MAX_TOKENS)
            max_tokens = DEFAULT_MAX_TOKENS
        if not temperature:
            logger.debug("request_default_temperature", value=DEFAULT_TEMPERATURE)
            temperature = DEFAULT_TEMPERATURE
        if not system_prompt or not system_prompt.strip():
            system_prompt = None
        return system_prompt, max_tokens, temperature

    async def request(
        self,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> ModelResponse:
        prefix = self.model_prefix
        logger.info("model_request_start", model=self._model)
        try:
            system_prompt, max_tokens, temperature = self.validate_request(
                messages, system_prompt, max_tokens, temperature
            )
        except ValidationError as e:
            await self._store.set(f"{prefix}.request.state", "error")
            await self._store.set(f"{prefix}.response.error", f"Request validation failed: {e}")
            logger.warning("model_request_invalid", model=self._model, error=str(e))
            raise

        await self._store.set(f"{prefix}.request.state", "start")
        await self._store.set(f"{prefix}.response.error", "")

        response = await self._provider.submit(
            model=self._model,
            messages=messages,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not response.model:
            response.model = self._model

        await self._store.set(f"{prefix}.request.body", dump(response.request_data))
        await self._store.set(f"{prefix}.response.raw", dump(response.response_data))
        if response.error:
            await self._store.set(f"{prefix}.request.state", "error")
            await self._store.set(f"{prefix}.response.error", response.error)
            await self._store.set("assistant.text_response", f"Error: {response.error}")
            return response

        await self._store.set(f"{prefix}.request.state", "success")
        await self._store.set(f"{prefix}.response.error", "")
        await self.update_statistics(f"{prefix}.statistics", response)
        await self.update_statistics("assistant.statistics", response)
        response.text = extract_json_string(response.text)
        return response

    async def update_statistics(self, branch: str, response: ModelResponse) -> None:
        tokens_input = await self._read_number(f"{branch}.tokens_input")
        tokens_output = await self._read_number(f"{branch}.tokens_output")
        requests_count = await self._read_number(f"{branch}.requests_count")
        await self._store.set(f"{branch}.tokens_input", tokens_input + response.tokens_input)
        await self._store.set(f"{branch}.tokens_output", tokens_output + response.tokens_output)
        await self._store.set(f"{branch}.requests_count", int(requests_count) + 1)
        await self._store.set(f"{branch}.last_request", datetime.now(timezone.utc).isoformat())

    async def _read_number(self, state_id: str) -> float:
        state = await self._store.get(state_id)
        if state is None or state.value in (None, ""):
            return 0
        try:
            value = float(state.value)
        except (TypeError, ValueError):
            return 0
        return int(value) if value.is_integer() else value
