"""
Price audit for model-drafted package options.

``apply_price_audit`` is a pure function of (reply, ledger). Every priced
field the model filled in must be backed by an evidence entry gathered from
tool results of the same turn, in the same currency and within tolerance.
Anything else is nulled and reported as a PriceAuditIssue. Descriptive fields
are never touched.

Running the audit on its own output with the same ledger yields no issues.
"""

import logging
from typing import List, Optional, Tuple

from concierge.state.audit_state import AuditService, PriceAudit, PriceAuditIssue
from concierge.state.evidence_state import (
    ExcursionEvidence,
    FlightEvidence,
    HotelEvidence,
    InsuranceEvidence,
    PriceEvidenceLedger,
    TransferEvidence,
)
from concierge.state.package_state import (
    AssistantReply,
    ExcursionDraft,
    FlightDraft,
    HotelDraft,
    InsuranceDraft,
    PackageOption,
    TransferDraft,
)
from concierge.utils.coerce import (
    amounts_close,
    currencies_match,
    normalize_match_token,
    to_currency_code,
    to_finite_number,
    to_iso_date,
    to_safe_integer,
    to_trimmed_string,
)
from concierge.utils.costs import VerifiedCostBreakdown


logger = logging.getLogger(__name__)


def _same_id(left: Optional[str], right: Optional[str]) -> bool:
    left_value = to_trimmed_string(left)
    right_value = to_trimmed_string(right)
    return bool(left_value and right_value and left_value.lower() == right_value.lower())


def _fuzzy_name_match(left: Optional[str], right: Optional[str]) -> bool:
    left_token = normalize_match_token(left)
    right_token = normalize_match_token(right)
    if not left_token or not right_token:
        return False
    return left_token in right_token or right_token in left_token


def find_hotel_evidence(draft: HotelDraft, ledger: PriceEvidenceLedger) -> Optional[HotelEvidence]:
    if to_trimmed_string(draft.hotel_code):
        for entry in ledger.hotels:
            if _same_id(entry.hotel_code, draft.hotel_code):
                return entry
    for entry in ledger.hotels:
        if _fuzzy_name_match(draft.hotel_name, entry.hotel_name):
            return entry
    return None


def find_transfer_evidence(draft: TransferDraft, ledger: PriceEvidenceLedger) -> Optional[TransferEvidence]:
    if to_trimmed_string(draft.selection_id):
        for entry in ledger.transfers:
            if _same_id(entry.id, draft.selection_id):
                return entry
    for entry in ledger.transfers:
        if _fuzzy_name_match(draft.vehicle_name, entry.vehicle_name):
            return entry
    return None


def find_flight_evidence(draft: FlightDraft, ledger: PriceEvidenceLedger) -> Optional[FlightEvidence]:
    if to_trimmed_string(draft.selection_id):
        for entry in ledger.flights:
            if _same_id(entry.id, draft.selection_id):
                return entry

    origin = to_trimmed_string(draft.origin)
    destination = to_trimmed_string(draft.destination)
    departure_date = to_iso_date(draft.departure_date)
    if not origin or not destination or not departure_date:
        return None
    for entry in ledger.flights:
        if (
            (entry.origin or "").upper() == origin.upper()
            and (entry.destination or "").upper() == destination.upper()
            and entry.departure_date == departure_date
        ):
            return entry
    return None


def find_excursion_evidence(item_id: Optional[str], ledger: PriceEvidenceLedger) -> Optional[ExcursionEvidence]:
    if not to_trimmed_string(item_id):
        return None
    for entry in ledger.excursions:
        if _same_id(entry.id, item_id):
            return entry
    return None


def find_insurance_evidence(draft: InsuranceDraft, ledger: PriceEvidenceLedger) -> Optional[InsuranceEvidence]:
    """
    First quote agreeing with every criterion the draft states (dates, days,
    risk amount and currency); otherwise the first quote of the turn.
    """
    start_date = to_iso_date(draft.start_date)
    end_date = to_iso_date(draft.end_date)
    days = to_safe_integer(draft.days)
    risk_amount = to_finite_number(draft.risk_amount)
    risk_currency = to_currency_code(draft.risk_currency)

    for entry in ledger.insurances:
        same_dates = (not start_date or entry.start_date == start_date) and (
            not end_date or entry.end_date == end_date
        )
        same_days = days is None or entry.days == days
        same_risk = risk_amount is None or entry.risk_amount is None or amounts_close(entry.risk_amount, risk_amount)
        same_risk_currency = (
            not risk_currency or not entry.risk_currency or currencies_match(risk_currency, entry.risk_currency)
        )
        if same_dates and same_days and same_risk and same_risk_currency:
            return entry
    return ledger.insurances[0] if ledger.insurances else None


def _price_matches(amount: float, currency: Optional[str], expected: List[Optional[float]], expected_currency) -> bool:
    if not currency or not currencies_match(currency, expected_currency):
        return False
    return any(value is not None and amounts_close(amount, value) for value in expected)


class _OptionAudit:
    """Audits one option in place; the caller hands it a deep copy."""

    def __init__(self, option: PackageOption, ledger: PriceEvidenceLedger):
        self.option = option
        self.ledger = ledger
        self.issues: List[PriceAuditIssue] = []
        self.breakdown = VerifiedCostBreakdown()

    def _issue(self, service: AuditService, reason: str, amount: Optional[float], currency: Optional[str]) -> None:
        self.issues.append(
            PriceAuditIssue(
                option_id=self.option.id,
                service=service,
                reason=reason,
                provided_amount=amount,
                provided_currency=to_currency_code(currency),
            )
        )

    def _check(self, service: AuditService, draft, expected: List[Optional[float]], expected_currency) -> None:
        """Keep draft.price when it matches the evidence, otherwise null it."""
        amount = to_finite_number(draft.price)
        if amount is None:
            return
        currency = to_currency_code(draft.currency)
        if _price_matches(amount, currency, expected, expected_currency):
            self.breakdown.add(service, amount, currency)
            return
        self._issue(service, f"unverified_{service}_price_removed", amount, draft.currency)
        draft.price = None
        draft.currency = None

    def audit_hotel(self) -> None:
        hotel = self.option.draft.hotel
        if hotel is None:
            return
        evidence = find_hotel_evidence(hotel, self.ledger)
        self._check(
            "hotel",
            hotel,
            [evidence.price] if evidence else [],
            evidence.currency if evidence else None,
        )

    def audit_transfer(self) -> None:
        transfer = self.option.draft.transfer
        if transfer is None:
            return
        evidence = find_transfer_evidence(transfer, self.ledger)
        self._check(
            "transfer",
            transfer,
            [evidence.one_way, evidence.return_price] if evidence else [],
            evidence.currency if evidence else None,
        )

    def audit_flight(self) -> None:
        flight = self.option.draft.flight
        if flight is None:
            return
        evidence = find_flight_evidence(flight, self.ledger)
        self._check(
            "flight",
            flight,
            [evidence.total_price] if evidence else [],
            evidence.currency if evidence else None,
        )

    def audit_insurance(self) -> None:
        insurance = self.option.draft.insurance
        if insurance is None:
            return
        evidence = find_insurance_evidence(insurance, self.ledger)
        self._check(
            "insurance",
            insurance,
            [evidence.total_premium] if evidence else [],
            evidence.currency if evidence else None,
        )

    def audit_excursion(self) -> None:
        excursion: Optional[ExcursionDraft] = self.option.draft.excursion
        if excursion is None:
            return

        for item in excursion.items:
            amount = to_finite_number(item.price)
            if amount is None:
                continue
            evidence = find_excursion_evidence(item.id, self.ledger)
            currency = to_currency_code(item.currency)
            if evidence is not None and _price_matches(
                amount, currency, [evidence.adult_price, evidence.child_price], evidence.currency
            ):
                self.breakdown.add("excursion", amount, currency)
                continue
            self._issue("excursion", "unverified_excursion_item_price_removed", amount, item.currency)
            item.price = None
            item.currency = None

        total = to_finite_number(excursion.price)
        if total is None:
            return
        total_currency = to_currency_code(excursion.currency)
        # Items still priced at this point were all verified above.
        known_total = sum(
            item.price
            for item in excursion.items
            if item.price is not None and total_currency and to_currency_code(item.currency) == total_currency
        )
        if known_total > 0 and amounts_close(total, known_total):
            return
        reason = (
            "unverified_excursion_total_price_removed"
            if known_total > 0
            else "excursion_total_without_item_evidence_removed"
        )
        self._issue("excursion", reason, total, excursion.currency)
        excursion.price = None
        excursion.currency = None

    def audit_approx_total(self) -> None:
        approx_total = self.option.approx_total
        if approx_total is None:
            return
        amount = to_finite_number(approx_total.amount)
        if amount is None:
            return
        currency = to_currency_code(approx_total.currency)
        verified_total = self.breakdown.total(currency)
        if verified_total > 0 and amounts_close(amount, verified_total):
            return
        reason = (
            "approx_total_removed_mismatch_with_verified_prices"
            if verified_total > 0
            else "approx_total_without_verified_prices_removed"
        )
        self._issue("total", reason, amount, approx_total.currency)
        # Only the amount goes; currency and note are descriptive.
        approx_total.amount = None

    def run(self) -> List[PriceAuditIssue]:
        self.audit_hotel()
        self.audit_transfer()
        self.audit_flight()
        self.audit_excursion()
        self.audit_insurance()
        self.audit_approx_total()
        return self.issues


def apply_price_audit(
    reply: AssistantReply,
    ledger: PriceEvidenceLedger,
) -> Tuple[AssistantReply, PriceAudit]:
    """
    Reconcile every priced field of every option against the ledger.

    Returns a new reply and the audit record; the input reply is left as is.
    The audit status is "fail" exactly when at least one field was removed.
    """
    issues: List[PriceAuditIssue] = []
    options: List[PackageOption] = []
    verified_totals = {}
    for option in reply.package_options:
        audited = option.model_copy(deep=True)
        option_audit = _OptionAudit(audited, ledger)
        issues.extend(option_audit.run())
        verified_totals[audited.id] = option_audit.breakdown.summary()
        options.append(audited)

    audit = PriceAudit.from_issues(issues)
    if issues:
        logger.warning(
            "[Audit] unverified prices removed from reply",
            extra={
                "num_issues": len(issues),
                "reasons": sorted({issue.reason for issue in issues}),
                "ledger_size": ledger.size(),
                "verified_totals": verified_totals,
            },
        )
    return reply.model_copy(update={"package_options": options}), audit
