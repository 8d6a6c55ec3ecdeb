from typing import Dict, Optional

from concierge.state.audit_state import AuditService


def _get_currency_bucket(
    currency_totals: Dict[str, Dict[str, float]],
    currency: Optional[str],
) -> Dict[str, float]:
    code = currency or "UNKNOWN"
    if code not in currency_totals:
        currency_totals[code] = {
            "hotel": 0.0,
            "transfer": 0.0,
            "flight": 0.0,
            "excursion": 0.0,
            "insurance": 0.0,
        }
    return currency_totals[code]


class VerifiedCostBreakdown:
    """
    Running per-currency totals of the prices the audit has verified for one
    package option, bucketed by service.
    """

    def __init__(self) -> None:
        self.currency_totals: Dict[str, Dict[str, float]] = {}

    def add(self, service: AuditService, amount: float, currency: str) -> None:
        bucket = _get_currency_bucket(self.currency_totals, currency)
        bucket[service] = bucket.get(service, 0.0) + float(amount)

    def total(self, currency: Optional[str]) -> float:
        if not currency or currency not in self.currency_totals:
            return 0.0
        return sum(self.currency_totals[currency].values())

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Totals per currency, with a "total" key added to each bucket."""
        return {
            code: {**bucket, "total": sum(bucket.values())}
            for code, bucket in self.currency_totals.items()
        }
