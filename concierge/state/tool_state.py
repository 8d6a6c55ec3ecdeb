import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from concierge.state.audit_state import PriceAudit
from concierge.state.context_state import WireModel
from concierge.state.package_state import AssistantReply


class ToolCall(BaseModel):
    """
    A tool invocation requested by the model.

    `arguments` is whatever the backend handed us (usually a JSON string or a
    dict) and is untrusted until parse_tool_args has looked at it.
    """

    id: str
    name: str
    arguments: Any = None


class ToolResult(BaseModel):
    """Outcome of one tool call. Failures are data, never exceptions."""

    ok: bool
    tool: str
    data: Any = None
    error: Optional[str] = None

    def to_message_content(self) -> str:
        payload: Dict[str, Any] = {"ok": self.ok, "tool": self.tool}
        if self.ok:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
        return json.dumps(payload, ensure_ascii=False, default=str)


class ChatMessage(BaseModel):
    """One entry of the message log the loop grows across rounds."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ModelTurn(BaseModel):
    """One model response: either tool calls to run or a final content string."""

    model: str
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)


ProgressEventType = Literal["model_start", "tool_call", "tool_result", "finalizing"]


class ProgressEvent(BaseModel):
    type: ProgressEventType
    model: Optional[str] = None
    round: Optional[int] = None
    tool: Optional[str] = None
    ok: Optional[bool] = None


class GenerationMeta(WireModel):
    model: str
    tool_calls: int = 0
    price_audit: PriceAudit = Field(default_factory=PriceAudit)


class GenerationOutput(WireModel):
    reply: AssistantReply
    meta: GenerationMeta
