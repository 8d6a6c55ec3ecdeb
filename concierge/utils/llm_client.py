"""
Model invocation for the concierge loop.

A ``ModelBackend`` turns the explicit message log of the loop into one model
response. ``AdkModelBackend`` drives any google-adk ``BaseLlm`` (``LiteLlm``
for OpenAI-style providers, ``Gemini`` for Google) directly, without an ADK
Runner or session: the loop owns its history and tool execution.

``ModelChain`` is the fallback combinator: backends are tried in order, each
under the same timeout, and the first successful response wins.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from google.adk.models.base_llm import BaseLlm
from google.adk.models.google_llm import Gemini
from google.adk.models.lite_llm import LiteLlm
from google.adk.models.llm_request import LlmRequest
from google.genai import types as genai_types
from pydantic import BaseModel

from concierge.state.tool_state import ChatMessage, ModelTurn, ToolCall
from concierge.utils.coerce import parse_json_like, parse_record
from concierge.utils.errors import ModelBackendError, ModelUnavailableError


logger = logging.getLogger(__name__)

GOOGLE_PROVIDERS = ("google", "gemini")


class LLMConfig(BaseModel):
    provider: str = "openai"
    model: str
    temperature: float = 0.35
    top_p: Optional[float] = 0.95
    max_tokens: int = 4096
    api_key: Optional[str] = None

    @property
    def model_id(self) -> str:
        return f"{self.provider}/{self.model}"


class ModelBackend(Protocol):
    name: str

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[genai_types.FunctionDeclaration],
    ) -> ModelTurn:
        ...


def _tool_response_payload(content: Optional[str]) -> Dict[str, Any]:
    parsed = parse_record(parse_json_like(content))
    if parsed is not None:
        return parsed
    return {"result": content or ""}


def _tool_call_args(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    return parse_record(parse_json_like(arguments)) or {}


class AdkModelBackend:
    """Adapter between the loop's ChatMessage log and an ADK model."""

    def __init__(self, llm: BaseLlm, config: LLMConfig, strip_call_ids: bool = False):
        self.llm = llm
        self.config = config
        self.name = config.model
        # Gemini assigns its own call ids and rejects client-made ones.
        self._strip_call_ids = strip_call_ids

    def build_request(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[genai_types.FunctionDeclaration],
    ) -> LlmRequest:
        system_parts = [m.content for m in messages if m.role == "system" and m.content]
        contents: List[genai_types.Content] = []
        pending_responses: List[genai_types.Part] = []

        def flush_responses() -> None:
            if pending_responses:
                contents.append(genai_types.Content(role="user", parts=list(pending_responses)))
                pending_responses.clear()

        for message in messages:
            if message.role == "system":
                continue
            if message.role == "tool":
                pending_responses.append(
                    genai_types.Part(
                        function_response=genai_types.FunctionResponse(
                            id=None if self._strip_call_ids else message.tool_call_id,
                            name=message.name or "",
                            response=_tool_response_payload(message.content),
                        )
                    )
                )
                continue

            flush_responses()
            if message.role == "user":
                contents.append(
                    genai_types.Content(role="user", parts=[genai_types.Part(text=message.content or "")])
                )
                continue

            parts: List[genai_types.Part] = []
            if message.content:
                parts.append(genai_types.Part(text=message.content))
            for call in message.tool_calls:
                parts.append(
                    genai_types.Part(
                        function_call=genai_types.FunctionCall(
                            id=None if self._strip_call_ids else call.id,
                            name=call.name,
                            args=_tool_call_args(call.arguments),
                        )
                    )
                )
            if parts:
                contents.append(genai_types.Content(role="model", parts=parts))
        flush_responses()

        config = genai_types.GenerateContentConfig(
            system_instruction="\n\n".join(system_parts) or None,
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            max_output_tokens=self.config.max_tokens,
            tools=[genai_types.Tool(function_declarations=list(tools))] if tools else None,
        )
        return LlmRequest(model=self.llm.model, contents=contents, config=config)

    def to_model_turn(self, content: genai_types.Content) -> ModelTurn:
        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in content.parts or []:
            if part.thought:
                continue
            if part.function_call is not None:
                call = part.function_call
                tool_calls.append(
                    ToolCall(
                        id=call.id or f"call_{uuid.uuid4().hex[:12]}",
                        name=call.name or "",
                        arguments=dict(call.args or {}),
                    )
                )
            elif part.text:
                text_parts.append(part.text)
        return ModelTurn(model=self.name, content="".join(text_parts) or None, tool_calls=tool_calls)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[genai_types.FunctionDeclaration],
    ) -> ModelTurn:
        request = self.build_request(messages, tools)
        final_response = None
        async for response in self.llm.generate_content_async(request, stream=False):
            if response.partial:
                continue
            if response.error_code:
                raise ModelBackendError(
                    f"{self.name} returned {response.error_code}: {response.error_message or ''}".strip()
                )
            final_response = response
        if final_response is None:
            raise ModelBackendError(f"{self.name} returned no response")
        if final_response.content is None:
            # A completion without a message ends the turn with the fallback reply.
            logger.warning("[LLM] completion has no message", extra={"model": self.name})
            return ModelTurn(model=self.name)
        return self.to_model_turn(final_response.content)


def build_model_backend(config: LLMConfig) -> AdkModelBackend:
    if config.provider.lower() in GOOGLE_PROVIDERS:
        return AdkModelBackend(Gemini(model=config.model), config, strip_call_ids=True)
    # drop_params lets litellm discard sampling params a model does not accept
    # (gpt-5 models only take the default temperature).
    extra = {"api_key": config.api_key} if config.api_key else {}
    return AdkModelBackend(LiteLlm(model=config.model_id, drop_params=True, **extra), config)


class ModelChain:
    """Ordered, stateless list of backends tried in sequence."""

    def __init__(self, backends: Iterable[ModelBackend], timeout_seconds: float = 30.0):
        unique: List[ModelBackend] = []
        seen = set()
        for backend in backends:
            if backend.name in seen:
                continue
            seen.add(backend.name)
            unique.append(backend)
        self.backends = unique
        self.timeout_seconds = timeout_seconds

    def is_configured(self) -> bool:
        return bool(self.backends)

    @property
    def primary_model(self) -> Optional[str]:
        return self.backends[0].name if self.backends else None

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[genai_types.FunctionDeclaration],
    ) -> ModelTurn:
        """
        Return the first successful response.

        Any exception from a backend (timeout, transport failure, error
        response) moves on to the next one. Raises ModelUnavailableError when
        every backend failed.
        """
        last_error: Optional[BaseException] = None
        for backend in self.backends:
            try:
                turn = await asyncio.wait_for(
                    backend.complete(messages, tools),
                    timeout=self.timeout_seconds,
                )
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "[LLM] model backend failed",
                    extra={
                        "model": backend.name,
                        "error_type": type(exc).__name__,
                        "error": str(exc)[:200],
                    },
                )
                continue
            return turn.model_copy(update={"model": backend.name})

        raise ModelUnavailableError(
            f"All model backends failed ({len(self.backends)} tried)"
        ) from last_error


def build_model_chain(configs: Iterable[LLMConfig], timeout_seconds: float = 30.0) -> ModelChain:
    return ModelChain([build_model_backend(config) for config in configs], timeout_seconds=timeout_seconds)

