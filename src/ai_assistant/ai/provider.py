"""Model provider abstraction with an Anthropic API backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ai_assistant.config import AnthropicConfig
from ai_assistant.log import get_logger

logger = get_logger(__name__)


@dataclass
class ModelResponse:
    """Unified response from any model backend.

    Failures are reported through ``error`` rather than raised, so the
    caller can record the request/response bodies either way.
    """

    text: Optional[str]
    tokens_input: int = 0
    tokens_output: int = 0
    model: str = ""
    error: Optional[str] = None
    request_data: Any = None
    response_data: Any = None


class ModelProvider(ABC):
    """Abstract base class for language-model backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def api_token_check(self) -> bool:
        """Whether the provider has the credentials it needs."""
        ...

    @abstractmethod
    async def submit(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float,
    ) -> ModelResponse:
        ...


class AnthropicProvider(ModelProvider):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig):
        import anthropic

        self._config = config
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key or None,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    def api_token_check(self) -> bool:
        return bool(self._config.api_key)

    async def submit(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float,
    ) -> ModelResponse:
        import anthropic

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": temperature,
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        logger.debug("api_request", model=model, message_count=len(messages))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            logger.error("api_error", model=model, status=e.status_code, error=str(e))
            return ModelResponse(
                text=None,
                model=model,
                error=str(e),
                request_data=kwargs,
                response_data=_safe_body(e),
            )
        except anthropic.APIError as e:
            logger.error("api_error", model=model, error=str(e))
            return ModelResponse(text=None, model=model, error=str(e), request_data=kwargs)

        logger.debug(
            "api_response",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        text = "".join(b.text for b in response.content if b.type == "text")
        return ModelResponse(
            text=text,
            tokens_input=response.usage.input_tokens,
            tokens_output=response.usage.output_tokens,
            model=response.model or model,
            request_data=kwargs,
            response_data=response.model_dump(mode="json"),
        )


def _safe_body(error: Any) -> Any:
    body = getattr(error, "body", None)
    if body is None:
        return None
    return body if isinstance(body, (dict, list, str)) else str(body)
