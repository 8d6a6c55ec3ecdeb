import logging
from typing import Any, Dict, List

from concierge.state.evidence_state import (
    ExcursionEvidence,
    FlightEvidence,
    HotelEvidence,
    InsuranceEvidence,
    PriceEvidenceLedger,
    TransferEvidence,
)
from concierge.state.tool_state import ToolResult
from concierge.utils.coerce import (
    parse_record,
    to_currency_code,
    to_finite_number,
    to_iso_date,
    to_safe_integer,
    to_trimmed_string,
)


logger = logging.getLogger(__name__)


def _records(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [record for record in (parse_record(entry) for entry in value) if record is not None]


def _first_segment(value: Any) -> Dict[str, Any]:
    segments = value if isinstance(value, list) else []
    return (parse_record(segments[0]) if segments else None) or {}


def _segment_date(segment: Dict[str, Any]) -> Any:
    departure = to_trimmed_string(segment.get("departureDateTime"))
    return departure[:10] if departure else None


def _append_hotels(ledger: PriceEvidenceLedger, data: Dict[str, Any]) -> None:
    for hotel in _records(data.get("hotels")):
        ledger.hotels.append(
            HotelEvidence(
                hotel_code=to_trimmed_string(hotel.get("code")),
                hotel_name=to_trimmed_string(hotel.get("name")),
                price=to_finite_number(hotel.get("minPrice")),
                currency=to_currency_code(hotel.get("currency")),
            )
        )


def _append_transfers(ledger: PriceEvidenceLedger, data: Dict[str, Any]) -> None:
    for transfer in _records(data.get("transfers")):
        pricing = parse_record(transfer.get("pricing")) or {}
        vehicle = parse_record(transfer.get("vehicle")) or {}
        ledger.transfers.append(
            TransferEvidence(
                id=to_trimmed_string(transfer.get("id")),
                transfer_type=to_trimmed_string(transfer.get("transferType")),
                vehicle_name=to_trimmed_string(vehicle.get("name")),
                one_way=to_finite_number(pricing.get("oneWay")),
                return_price=to_finite_number(pricing.get("return")),
                currency=to_currency_code(pricing.get("currency")),
            )
        )


def _append_flights(ledger: PriceEvidenceLedger, data: Dict[str, Any]) -> None:
    for offer in _records(data.get("offers")):
        outbound = _first_segment(offer.get("outbound"))
        inbound = _first_segment(offer.get("inbound"))
        ledger.flights.append(
            FlightEvidence(
                id=to_trimmed_string(offer.get("id")) or "",
                total_price=to_finite_number(offer.get("totalPrice")),
                currency=to_currency_code(offer.get("currency")),
                origin=to_trimmed_string(outbound.get("origin")),
                destination=to_trimmed_string(outbound.get("destination")),
                departure_date=_segment_date(outbound),
                return_date=_segment_date(inbound),
            )
        )


def _append_excursions(ledger: PriceEvidenceLedger, data: Dict[str, Any]) -> None:
    for excursion in _records(data.get("excursions")):
        pricing = parse_record(excursion.get("pricing")) or {}
        ledger.excursions.append(
            ExcursionEvidence(
                id=to_trimmed_string(excursion.get("id")),
                name=to_trimmed_string(excursion.get("name")),
                adult_price=to_finite_number(pricing.get("adult")),
                child_price=to_finite_number(pricing.get("child")),
                currency=to_currency_code(pricing.get("currency")),
            )
        )


def _append_insurance(ledger: PriceEvidenceLedger, data: Dict[str, Any]) -> None:
    query = parse_record(data.get("query")) or {}
    quote = parse_record(data.get("quote")) or {}
    ledger.insurances.append(
        InsuranceEvidence(
            total_premium=to_finite_number(quote.get("totalPremium")),
            currency=to_currency_code(quote.get("currency")),
            start_date=to_iso_date(query.get("startDate")),
            end_date=to_iso_date(query.get("endDate")),
            days=to_safe_integer(query.get("days")),
            territory_code=to_trimmed_string(query.get("territoryCode")),
            risk_amount=to_finite_number(query.get("riskAmount")),
            risk_currency=to_currency_code(query.get("riskCurrency")),
            traveler_count=to_safe_integer(query.get("travelerCount")),
        )
    )


_EXTRACTORS = {
    "search_hotels": _append_hotels,
    "search_transfers": _append_transfers,
    "search_flights": _append_flights,
    "search_excursions": _append_excursions,
    "quote_insurance": _append_insurance,
}


def append_tool_price_evidence(ledger: PriceEvidenceLedger, result: ToolResult) -> None:
    """
    Record the priced facts of one successful tool result in the ledger.

    Failed results, tools without prices (lookup_destinations) and payloads
    that are not objects are ignored. Entries are appended as-is, duplicates
    included.
    """
    if not result.ok:
        return
    data = parse_record(result.data)
    if data is None:
        return
    extractor = _EXTRACTORS.get(result.tool)
    if extractor is None:
        return

    before = ledger.size()
    extractor(ledger, data)
    logger.debug(
        "[Evidence] recorded priced facts",
        extra={"tool": result.tool, "num_entries": ledger.size() - before},
    )
