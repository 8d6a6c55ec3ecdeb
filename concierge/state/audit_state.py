from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import Field

from concierge.state.context_state import WireModel


AuditService = Literal["hotel", "transfer", "flight", "excursion", "insurance", "total"]
AuditStatus = Literal["pass", "fail"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PriceAuditIssue(WireModel):
    """One priced field that was removed because no evidence backed it."""

    option_id: str
    service: AuditService
    reason: str
    provided_amount: Optional[float] = None
    provided_currency: Optional[str] = None


class PriceAudit(WireModel):
    status: AuditStatus = "pass"
    issues: List[PriceAuditIssue] = Field(default_factory=list)
    checked_at: str = Field(default_factory=utc_now_iso)

    @classmethod
    def from_issues(cls, issues: List[PriceAuditIssue]) -> "PriceAudit":
        return cls(status="fail" if issues else "pass", issues=list(issues))
