import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from concierge.state.audit_state import PriceAudit
from concierge.state.context_state import Locale, TripContext
from concierge.state.package_state import AssistantReply
from concierge.utils.coerce import to_trimmed_string


logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Where chat turns are recorded; the concierge never reads them back."""

    async def upsert_session(
        self,
        session_id: str,
        fields: Dict[str, Any],
        on_insert: Dict[str, Any],
    ) -> None:
        ...

    async def append_messages(self, entries: List[Dict[str, Any]]) -> None:
        ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.messages: List[Dict[str, Any]] = []

    async def upsert_session(
        self,
        session_id: str,
        fields: Dict[str, Any],
        on_insert: Dict[str, Any],
    ) -> None:
        if session_id not in self.sessions:
            self.sessions[session_id] = {"_id": session_id, **on_insert}
        self.sessions[session_id].update(fields)

    async def append_messages(self, entries: List[Dict[str, Any]]) -> None:
        self.messages.extend(entries)

    def messages_for(self, session_id: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.messages if entry.get("sessionId") == session_id]


async def persist_turn(
    store: SessionStore,
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
    """
    Record one finished turn: upsert the session summary and append the user
    and assistant messages.

    Failures are logged and swallowed; a turn that was answered stays answered
    even if it cannot be stored.
    """
    try:
        now = datetime.now(timezone.utc)
        audit_wire = price_audit.model_dump(by_alias=True)
        await store.upsert_session(
            session_id,
            {
                "locale": locale,
                "userId": to_trimmed_string(user_id),
                "context": context.model_dump(by_alias=True) if context else None,
                "updatedAt": now,
                "lastModel": model,
                "lastToolCalls": tool_calls,
                "lastStage": reply.stage,
                "lastMissing": list(reply.missing),
                "lastPackageOptions": len(reply.package_options),
                "lastPriceAuditStatus": price_audit.status,
                "lastPriceAuditIssues": len(price_audit.issues),
                "lastPriceAudit": audit_wire,
            },
            {"createdAt": now},
        )

        entries: List[Dict[str, Any]] = []
        if to_trimmed_string(user_message):
            entries.append(
                {
                    "sessionId": session_id,
                    "role": "user",
                    "content": user_message,
                    "createdAt": now,
                }
            )
        reply_wire = reply.to_wire()
        entries.append(
            {
                "sessionId": session_id,
                "role": "assistant",
                "content": reply.message,
                "stage": reply.stage,
                "missing": reply_wire["missing"],
                "followUps": reply_wire["followUps"],
                "packageOptions": reply_wire["packageOptions"],
                "model": model,
                "toolCalls": tool_calls,
                "priceAudit": audit_wire,
                "createdAt": now,
            }
        )
        await store.append_messages(entries)
    except Exception:
        logger.exception(
            "[Concierge] Failed to persist chat turn",
            extra={"session_id": session_id},
        )
        return

    logger.info(
        "[Concierge] chat turn persisted",
        extra={"session_id": session_id, "stage": reply.stage, "model": model},
    )
