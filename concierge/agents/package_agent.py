import inspect
import logging
import os
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

import yaml

from concierge.agents.prompts import build_fallback_reply, build_system_prompt, build_unavailable_reply
from concierge.state.audit_state import PriceAudit
from concierge.state.context_state import Locale, ProjectContext, TripContext, normalize_locale
from concierge.state.evidence_state import PriceEvidenceLedger
from concierge.state.package_state import AssistantReply
from concierge.state.state_utils import (
    MAX_CONVERSATION_MESSAGES,
    ServiceFlagLoader,
    UserSignalLoader,
    load_project_context,
    sanitize_conversation,
)
from concierge.state.tool_state import ChatMessage, GenerationMeta, GenerationOutput, ProgressEvent
from concierge.tools.evidence import append_tool_price_evidence
from concierge.tools.persistence import SessionStore, persist_turn
from concierge.tools.tool_schemas import to_function_declarations
from concierge.tools.tools import ToolProviders, dispatch_tool_calls
from concierge.utils.availability import apply_service_availability
from concierge.utils.llm_client import ModelChain, build_model_chain
from concierge.utils.price_audit import apply_price_audit
from concierge.utils.reply_normalizer import normalize_reply_from_model


logger = logging.getLogger(__name__)

agent_config_path = os.path.join(os.path.dirname(__file__), "../config/agents.yaml")

# read the configs
with open(agent_config_path, "r") as f:
    agent_configs = yaml.safe_load(f)

_agent_config = agent_configs.get("package_concierge", {})

MAX_TOOL_ROUNDS = int(_agent_config.get("max_tool_rounds", 5))

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class PackageAgent:
    """
    Drives one conversation turn: model call, tool rounds, then the reply
    pipeline (normalize, availability filter, price audit).

    Instances hold configuration and collaborators only. Every piece of turn
    state (message log, evidence ledger, project context) lives inside a
    single generate_reply call.
    """

    def __init__(
        self,
        model_chain: ModelChain,
        tool_providers: Optional[ToolProviders],
        flag_loader: Optional[ServiceFlagLoader] = None,
        signal_loader: Optional[UserSignalLoader] = None,
        session_store: Optional[SessionStore] = None,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
        max_conversation_messages: int = MAX_CONVERSATION_MESSAGES,
        full_context: bool = True,
    ):
        self.model_chain = model_chain
        self.tool_providers = tool_providers
        self.flag_loader = flag_loader
        self.signal_loader = signal_loader
        self.session_store = session_store
        self.max_tool_rounds = max(1, max_tool_rounds)
        self.max_conversation_messages = max_conversation_messages
        self.full_context = full_context

    @staticmethod
    async def _emit(on_progress: Optional[ProgressCallback], event: ProgressEvent) -> None:
        # Callback errors propagate and abort the turn.
        if on_progress is None:
            return
        result = on_progress(event)
        if inspect.isawaitable(result):
            await result

    async def generate_reply(
        self,
        locale: Any,
        messages: Iterable[Any],
        context: Optional[Any] = None,
        user_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationOutput:
        """
        Answer one turn of the conversation.

        Raises ModelUnavailableError when every model backend fails, and
        re-raises whatever the progress callback raises. Everything else
        (bad tool arguments, failing collaborators, malformed model output,
        unverifiable prices) degrades inside the reply.
        """
        resolved_locale = normalize_locale(locale)
        trip_context = context if isinstance(context, TripContext) else TripContext.from_raw(context)
        conversation = sanitize_conversation(messages, self.max_conversation_messages)
        project_context = await load_project_context(
            self.flag_loader,
            self.signal_loader,
            user_id,
            full_context=self.full_context,
        )
        ledger = PriceEvidenceLedger()

        if not conversation:
            return self._finalize(
                build_fallback_reply(resolved_locale),
                resolved_locale,
                project_context,
                ledger,
                "fallback",
                0,
            )

        if not self.model_chain.is_configured():
            logger.warning("[Concierge] no model backend configured, returning unavailable reply")
            return self._finalize(
                build_unavailable_reply(resolved_locale),
                resolved_locale,
                project_context,
                ledger,
                "unconfigured",
                0,
            )

        log: List[ChatMessage] = [
            ChatMessage(
                role="system",
                content=build_system_prompt(resolved_locale, trip_context, project_context),
            )
        ]
        log.extend(ChatMessage(role=message.role, content=message.content) for message in conversation)

        tools = to_function_declarations()
        used_model = self.model_chain.primary_model or "unknown"
        tool_call_count = 0

        for round_number in range(1, self.max_tool_rounds + 1):
            await self._emit(on_progress, ProgressEvent(type="model_start", model=used_model, round=round_number))
            turn = await self.model_chain.complete(log, tools)
            used_model = turn.model

            if not turn.tool_calls:
                await self._emit(on_progress, ProgressEvent(type="finalizing", model=used_model, round=round_number))
                reply = normalize_reply_from_model(turn.content, resolved_locale)
                return self._finalize(reply, resolved_locale, project_context, ledger, used_model, tool_call_count)

            log.append(ChatMessage(role="assistant", content=turn.content or "", tool_calls=turn.tool_calls))
            for call in turn.tool_calls:
                await self._emit(on_progress, ProgressEvent(type="tool_call", tool=call.name, round=round_number))

            results = await dispatch_tool_calls(turn.tool_calls, self.tool_providers, trip_context)
            tool_call_count += len(results)
            logger.info(
                "[Concierge] tool round completed",
                extra={
                    "round": round_number,
                    "tools": [call.name for call in turn.tool_calls],
                    "failed": sum(1 for result in results if not result.ok),
                },
            )

            for call, result in zip(turn.tool_calls, results):
                append_tool_price_evidence(ledger, result)
                await self._emit(
                    on_progress,
                    ProgressEvent(type="tool_result", tool=result.tool, ok=result.ok, round=round_number),
                )
                log.append(
                    ChatMessage(
                        role="tool",
                        tool_call_id=call.id,
                        name=call.name,
                        content=result.to_message_content(),
                    )
                )

        logger.warning(
            "[Concierge] tool round budget exhausted, returning fallback reply",
            extra={"rounds": self.max_tool_rounds, "tool_calls": tool_call_count, "evidence": ledger.size()},
        )
        return self._finalize(
            build_fallback_reply(resolved_locale),
            resolved_locale,
            project_context,
            ledger,
            used_model,
            tool_call_count,
        )

    def _finalize(
        self,
        reply: AssistantReply,
        locale: Locale,
        project_context: ProjectContext,
        ledger: PriceEvidenceLedger,
        model: str,
        tool_calls: int,
    ) -> GenerationOutput:
        restricted = apply_service_availability(reply, project_context.service_flags, locale)
        audited, audit = apply_price_audit(restricted, ledger)
        logger.info(
            "[Concierge] reply generated",
            extra={
                "model": model,
                "tool_calls": tool_calls,
                "stage": audited.stage,
                "num_options": len(audited.package_options),
                "price_audit": audit.status,
            },
        )
        return GenerationOutput(
            reply=audited,
            meta=GenerationMeta(model=model, tool_calls=tool_calls, price_audit=audit),
        )

    async def persist_turn(
        self,
        session_id: str,
        locale: Locale,
        user_id: Optional[str],
        user_message: Optional[str],
        context: Optional[TripContext],
        reply: AssistantReply,
        model: str,
        tool_calls: int,
        price_audit: PriceAudit,
    ) -> None:
        if self.session_store is None:
            logger.debug("[Concierge] no session store configured, turn not persisted")
            return
        await persist_turn(
            self.session_store,
            session_id,
            locale,
            user_id,
            user_message,
            context,
            reply,
            model,
            tool_calls,
            price_audit,
        )


def build_package_agent(
    settings,
    tool_providers: Optional[ToolProviders] = None,
    flag_loader: Optional[ServiceFlagLoader] = None,
    signal_loader: Optional[UserSignalLoader] = None,
    session_store: Optional[SessionStore] = None,
) -> PackageAgent:
    """Build the agent from AppSettings and the package_concierge block of agents.yaml."""
    model_chain = build_model_chain(
        settings.llm_configs(_agent_config),
        timeout_seconds=float(_agent_config.get("timeout_seconds", 30)),
    )
    return PackageAgent(
        model_chain=model_chain,
        tool_providers=tool_providers,
        flag_loader=flag_loader,
        signal_loader=signal_loader,
        session_store=session_store,
        max_tool_rounds=MAX_TOOL_ROUNDS,
        max_conversation_messages=int(_agent_config.get("max_conversation_messages", MAX_CONVERSATION_MESSAGES)),
        full_context=settings.full_context,
    )
