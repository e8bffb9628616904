"""Request orchestrator: drives one assistant turn with retries and tool chaining."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.history import ChatHistoryStore
from ai_assistant.ai.json_utils import parse_json_object, strip_line_breaks
from ai_assistant.ai.provider import ModelResponse
from ai_assistant.ai.requester import ModelRequester, dump
from ai_assistant.ai.tools.base import ToolResult
from ai_assistant.ai.tools.registry import ToolDispatcher
from ai_assistant.config import AssistantConfig
from ai_assistant.errors import (
    AssistantError,
    EmptyResponseError,
    ParseError,
    ProviderError,
    ValidationError,
)
from ai_assistant.log import get_logger
from ai_assistant.storage.value_store import ValueStore

if TYPE_CHECKING:
    from ai_assistant.services.scheduler import TaskScheduler

logger = get_logger(__name__)

EMPTY_RESPONSE_ERROR = "Malformed model answer or missing text response"


def classify_failure(response: ModelResponse) -> Optional[AssistantError]:
    """Retryable failure of a provider call, or None for a usable reply."""
    if response.error:
        return ProviderError(response.error)
    if not response.text or not response.text.strip():
        return EmptyResponseError(EMPTY_RESPONSE_ERROR)
    return None


class RequestOrchestrator:
    """Top-level state machine for assistant turns.

    A turn assembles history plus the current text, calls the model and
    interprets the JSON reply. Provider errors and empty replies are
    retried through the task scheduler. A ``functionCall`` in the reply is
    dispatched to a tool and its result fed back as a function-response
    turn, up to ``max_chain_depth`` links per user turn.
    """

    def __init__(
        self,
        config: AssistantConfig,
        requester: ModelRequester,
        history: ChatHistoryStore,
        dispatcher: ToolDispatcher,
        store: ValueStore,
        scheduler: TaskScheduler,
    ):
        self._config = config
        self._requester = requester
        self._history = history
        self._dispatcher = dispatcher
        self._store = store
        self._scheduler = scheduler

    def system_prompt(self) -> str:
        return prompts.build_system_prompt(
            self._config.name, self._config.personality, self._dispatcher.catalog()
        )

    async def build_messages(self, text: str, is_function_response: bool = False) -> list[dict[str, Any]]:
        messages = await self._history.build_messages() if self._history.enabled else []
        if is_function_response:
            content = text
        else:
            content = prompts.wrap_user_message(text, self._config.language)
        messages.append({"role": "user", "content": content})
        return messages

    async def request(
        self,
        text: str,
        tries: int = 0,
        only_once: bool = False,
        is_function_response: bool = False,
        *,
        chain_depth: int = 0,
    ) -> Optional[ModelResponse]:
        """Run one attempt of a turn. Returns the response on success, else None."""
        logger.info(
            "assistant_request_start",
            tries=tries,
            function_response=is_function_response,
            chain_depth=chain_depth,
        )
        if tries == 0:
            await self._store.set("assistant.request.state", "start")
        await self._store.set("assistant.response.error", "")

        messages = await self.build_messages(text, is_function_response)
        try:
            response = await self._requester.request(
                messages,
                self.system_prompt(),
                self._config.max_tokens,
                self._config.temperature,
            )
        except ValidationError as e:
            logger.error("assistant_request_invalid", error=str(e))
            await self._store.set("assistant.request.state", "error")
            await self._store.set("assistant.response.error", str(e))
            return None

        await self._store.set("assistant.request.body", dump(response.request_data))
        await self._store.set("assistant.response.raw", dump(response.response_data))

        failure = classify_failure(response)
        if failure is not None:
            logger.warning(
                "assistant_request_unsuccessful",
                tries=tries,
                kind=type(failure).__name__,
                error=str(failure),
            )
            await self._store.set("assistant.request.state", "error")
            await self._store.set("assistant.response.error", str(failure))
            await self._schedule_retry(text, tries, only_once, is_function_response, chain_depth)
            return None

        await self._store.set("assistant.request.state", "success")
        await self.handle_reply(text, response, chain_depth)
        return response

    async def _schedule_retry(
        self,
        text: str,
        tries: int,
        only_once: bool,
        is_function_response: bool,
        chain_depth: int,
    ) -> None:
        await self._store.set("assistant.request.state", "retry")
        max_retries = self._config.max_retries
        if tries < max_retries and not only_once:
            next_try = tries + 1
            # The last retry goes out immediately.
            delay = 0 if next_try == max_retries else self._config.retry_delay
            logger.info("assistant_retry_scheduled", attempt=next_try, max_retries=max_retries, delay=delay)
            self._scheduler.call_later(
                delay,
                self.request,
                text,
                next_try,
                only_once,
                is_function_response,
                chain_depth=chain_depth,
            )
            return
        logger.error("assistant_request_failed", tries=tries, max_retries=max_retries)
        await self._store.set("assistant.request.state", "failed")

    async def handle_reply(self, text: str, response: ModelResponse, chain_depth: int = 0) -> None:
        reply = strip_line_breaks(response.text or "")
        try:
            data = parse_json_object(reply)
        except ParseError as e:
            logger.error("assistant_reply_unparsable", error=str(e), raw=e.raw)
            await self._store.set("assistant.request.state", "error")
            await self._store.set("assistant.response.error", str(e))
            return

        user_response = data.get("userResponse")
        if not user_response:
            logger.warning("assistant_reply_without_user_response")
            return

        function_call = data.get("functionCall")
        instruction = data.get("functionTextInstructionString") or ""
        if self._config.debug_output:
            await self._store.set(
                "assistant.text_response",
                f"Reasoning: {data.get('reasoning')}\n\n"
                f"FunctionCall: {function_call}\n\n"
                f"FunctionInstruction: {instruction}\n",
            )

        if not function_call:
            await self._store.set("assistant.text_response", user_response)
            await self._history.push(
                text,
                reply,
                model=response.model,
                tokens_input=response.tokens_input,
                tokens_output=response.tokens_output,
            )
            logger.info("assistant_request_completed", chain_depth=chain_depth)
            return

        logger.info("assistant_function_call", function=function_call)
        if not instruction:
            logger.warning("assistant_function_call_without_instruction", function=function_call)
        await self._store.set("assistant.text_response", user_response)

        result = await self._dispatcher.dispatch(str(function_call), str(instruction))
        if result is None:
            return
        if self._config.debug_output:
            await self._publish_tool_debug(result)

        max_depth = self._config.max_chain_depth
        if max_depth and chain_depth >= max_depth:
            logger.warning("assistant_chain_depth_exceeded", function=function_call, max_chain_depth=max_depth)
            return
        await self.request(
            json.dumps(result.to_payload(), ensure_ascii=False),
            0,
            False,
            True,
            chain_depth=chain_depth + 1,
        )

    async def _publish_tool_debug(self, result: ToolResult) -> None:
        await self._store.set(
            "assistant.text_response",
            "Received Response from FunctionCall\n\n"
            f"FunctionResponseFrom: {result.tool}\n\n"
            f"FunctionReasoning: {result.reasoning}\n\n"
            f"NoticeToAssistant: {result.notice_to_assistant}\n\n"
            f"FunctionResultData: {dump(result.result)}\n",
        )
