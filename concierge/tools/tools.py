import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from concierge.state.context_state import TripContext
from concierge.state.tool_state import ToolCall, ToolResult
from concierge.utils.coerce import (
    clamp_integer,
    parse_record,
    to_array_of_strings,
    to_currency_code,
    to_finite_number,
    to_iso_date,
    to_safe_integer,
    to_trimmed_string,
    unique_strings,
)
from concierge.utils.errors import resolve_safe_error_from_exception


logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "AE"
DEFAULT_NATIONALITY = "AM"
DEFAULT_HOTEL_CURRENCY = "USD"
DEFAULT_CHILD_AGE = 8

DEFAULT_INSURANCE_TERRITORY_CODE = "whole_world_exc_uk_sch_us_ca_au_jp"
DEFAULT_INSURANCE_RISK_AMOUNT = 15000.0
DEFAULT_INSURANCE_RISK_CURRENCY = "EUR"
DEFAULT_INSURANCE_RISK_LABEL = "STANDARD"
DEFAULT_INSURANCE_ADULT_AGE = 30
DEFAULT_INSURANCE_CHILD_AGE = 8
MAX_INSURANCE_TRAVELERS = 12
MAX_SUBRISKS = 12

MAX_HOTEL_RESULTS = 12
MAX_TRANSFER_RESULTS = 16
MAX_FLIGHT_OFFERS = 8


class ToolProviders(Protocol):
    """
    External collaborators behind the six tools.

    Every method takes a camelCase request dict and returns the provider's
    raw payload. Implementations may raise; executors turn any exception into
    a failed ToolResult.
    """

    async def list_destinations(self, request: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def search_hotels(self, request: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def fetch_transfer_rates(self, request: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...

    async def fetch_excursions(self, limit: int) -> Dict[str, Any]:
        ...

    async def search_flights(self, request: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def quote_insurance(self, request: Dict[str, Any]) -> Dict[str, Any]:
        ...


def parse_tool_args(raw: Any) -> Dict[str, Any]:
    """Decode a tool argument blob; anything that is not a JSON object becomes {}."""
    if isinstance(raw, dict):
        return dict(raw)
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parse_record(parsed) or {}


def _records(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [record for record in (parse_record(entry) for entry in value) if record is not None]


def _failed(tool: str, error: str) -> ToolResult:
    return ToolResult(ok=False, tool=tool, error=error)


def _collaborator_failed(tool: str, exc: Exception, fallback: str) -> ToolResult:
    logger.exception(
        f"[Tool] {tool} collaborator failed",
        extra={"tool": tool, "error_type": type(exc).__name__},
    )
    return _failed(tool, resolve_safe_error_from_exception(exc, fallback))


def build_rooms(adults: int, children: int, room_count: int) -> List[Dict[str, Any]]:
    """
    Split the party evenly across rooms, earlier rooms taking the remainder.

    Every room gets at least one adult; children are given a default age.
    """
    safe_room_count = max(1, room_count)
    safe_adults = max(safe_room_count, adults)
    safe_children = max(0, children)
    adult_base, adult_remainder = divmod(safe_adults, safe_room_count)
    child_base, child_remainder = divmod(safe_children, safe_room_count)

    rooms: List[Dict[str, Any]] = []
    for index in range(safe_room_count):
        adult_count = adult_base + (1 if index < adult_remainder else 0)
        child_count = child_base + (1 if index < child_remainder else 0)
        rooms.append(
            {
                "roomIdentifier": index + 1,
                "adults": max(1, adult_count),
                "childrenAges": [DEFAULT_CHILD_AGE] * child_count,
            }
        )
    return rooms


def build_insurance_travelers_from_context(context: Optional[TripContext]) -> List[Dict[str, Any]]:
    adults = clamp_integer(context.adults if context else None, 1, MAX_INSURANCE_TRAVELERS, 1)
    children = clamp_integer(context.children if context else None, 0, 8, 0)
    travelers: List[Dict[str, Any]] = []
    for index in range(adults):
        travelers.append(
            {
                "id": f"adult-{index + 1}",
                "age": DEFAULT_INSURANCE_ADULT_AGE,
                "passportNumber": None,
                "socialCard": None,
            }
        )
    for index in range(children):
        travelers.append(
            {
                "id": f"child-{index + 1}",
                "age": DEFAULT_INSURANCE_CHILD_AGE,
                "passportNumber": None,
                "socialCard": None,
            }
        )
    return travelers


def normalize_insurance_travelers_arg(value: Any) -> List[Dict[str, Any]]:
    """Keep travelers with a usable age (0-99); ids default to their position."""
    if not isinstance(value, list):
        return []
    travelers: List[Dict[str, Any]] = []
    for index, entry in enumerate(value):
        record = parse_record(entry)
        if record is None:
            continue
        age = clamp_integer(record.get("age"), 0, 99, -1)
        if age < 0:
            continue
        traveler: Dict[str, Any] = {
            "id": to_trimmed_string(record.get("id")) or f"traveler-{index + 1}",
            "age": age,
            "passportNumber": to_trimmed_string(record.get("passportNumber")),
            "socialCard": to_trimmed_string(record.get("socialCard")),
        }
        subrisks = unique_strings(to_array_of_strings(record.get("subrisks"), MAX_SUBRISKS), MAX_SUBRISKS)
        if subrisks:
            traveler["subrisks"] = subrisks
        travelers.append(traveler)
    return travelers[:MAX_INSURANCE_TRAVELERS]


def build_transfer_id(transfer: Dict[str, Any], index: int) -> str:
    explicit = to_trimmed_string(transfer.get("_id")) or to_trimmed_string(transfer.get("id"))
    if explicit:
        return explicit
    destination = parse_record(transfer.get("destination")) or {}
    vehicle = parse_record(transfer.get("vehicle")) or {}
    return "-".join(
        [
            to_trimmed_string(transfer.get("transferType")) or "transfer",
            to_trimmed_string(destination.get("locationCode"))
            or to_trimmed_string(destination.get("name"))
            or "destination",
            to_trimmed_string(vehicle.get("name")) or to_trimmed_string(vehicle.get("category")) or "vehicle",
            str(index + 1),
        ]
    )


def _context_value(context: Optional[TripContext], field: str) -> Any:
    return getattr(context, field) if context is not None else None


async def execute_lookup_destinations(args: Dict[str, Any], providers: ToolProviders) -> ToolResult:
    tool = "lookup_destinations"
    query = to_trimmed_string(args.get("query"))
    country_code = (to_trimmed_string(args.get("countryCode")) or DEFAULT_COUNTRY_CODE).upper()
    limit = clamp_integer(args.get("limit"), 1, 30, 12)

    try:
        result = parse_record(
            await providers.list_destinations({"q": query, "countryCode": country_code, "limit": limit})
        ) or {}
        destinations = [
            {"destinationCode": entry.get("destinationCode"), "name": entry.get("name")}
            for entry in _records(result.get("destinations"))[:limit]
        ]
    except Exception as exc:
        return _collaborator_failed(tool, exc, "Failed to fetch destinations.")

    logger.info(
        "[Tool] lookup_destinations completed",
        extra={"country_code": country_code, "num_destinations": len(destinations)},
    )
    return ToolResult(
        ok=True,
        tool=tool,
        data={
            "countryCode": result.get("countryCode") or country_code,
            "destinations": destinations,
        },
    )


async def execute_search_hotels(
    args: Dict[str, Any],
    providers: ToolProviders,
    context: Optional[TripContext],
) -> ToolResult:
    tool = "search_hotels"
    destination_code = to_trimmed_string(args.get("destinationCode")) or to_trimmed_string(
        _context_value(context, "destination_code")
    )
    hotel_code = to_trimmed_string(args.get("hotelCode"))
    check_in_date = to_iso_date(args.get("checkInDate")) or to_iso_date(_context_value(context, "check_in_date"))
    check_out_date = to_iso_date(args.get("checkOutDate")) or to_iso_date(_context_value(context, "check_out_date"))
    room_count = clamp_integer(_first(args.get("roomCount"), _context_value(context, "room_count")), 1, 4, 1)
    adults = clamp_integer(_first(args.get("adults"), _context_value(context, "adults")), 1, 12, 2)
    children = clamp_integer(_first(args.get("children"), _context_value(context, "children")), 0, 8, 0)
    currency = (
        to_currency_code(args.get("currency"))
        or to_currency_code(_context_value(context, "budget_currency"))
        or DEFAULT_HOTEL_CURRENCY
    )
    country_code = (to_trimmed_string(args.get("countryCode")) or DEFAULT_COUNTRY_CODE).upper()
    nationality = (to_trimmed_string(args.get("nationality")) or DEFAULT_NATIONALITY).upper()

    if not check_in_date or not check_out_date or (not destination_code and not hotel_code):
        logger.info(
            "[Tool] search_hotels skipped: missing required inputs",
            extra={"has_destination": bool(destination_code or hotel_code)},
        )
        return _failed(
            tool,
            "Missing required inputs for hotel search. "
            "Need checkInDate, checkOutDate and destinationCode/hotelCode.",
        )

    request = {
        "destinationCode": destination_code,
        "hotelCode": hotel_code,
        "countryCode": country_code,
        "nationality": nationality,
        "checkInDate": check_in_date,
        "checkOutDate": check_out_date,
        "currency": currency,
        "rooms": build_rooms(adults, children, room_count),
    }

    try:
        result = parse_record(await providers.search_hotels(request)) or {}
        hotels = [
            {
                "code": hotel.get("code"),
                "name": hotel.get("name"),
                "city": hotel.get("city"),
                "rating": hotel.get("rating"),
                "minPrice": hotel.get("minPrice"),
                "currency": hotel.get("currency") or result.get("currency"),
            }
            for hotel in _records(result.get("hotels"))[:MAX_HOTEL_RESULTS]
        ]
    except Exception as exc:
        return _collaborator_failed(tool, exc, "Hotel search failed.")

    logger.info(
        "[Tool] search_hotels completed",
        extra={
            "destination_code": destination_code,
            "hotel_code": hotel_code,
            "num_hotels": len(hotels),
        },
    )
    return ToolResult(
        ok=True,
        tool=tool,
        data={
            "query": {
                "destinationCode": destination_code,
                "hotelCode": hotel_code,
                "checkInDate": check_in_date,
                "checkOutDate": check_out_date,
                "roomCount": room_count,
                "adults": adults,
                "children": children,
                "currency": currency,
            },
            "destination": result.get("destination"),
            "propertyCount": result.get("propertyCount"),
            "hotels": hotels,
        },
    )


async def execute_search_transfers(
    args: Dict[str, Any],
    providers: ToolProviders,
    context: Optional[TripContext],
) -> ToolResult:
    tool = "search_transfers"
    destination_location_code = to_trimmed_string(args.get("destinationLocationCode"))
    destination_name = to_trimmed_string(args.get("destinationName")) or to_trimmed_string(
        _context_value(context, "destination_name")
    )
    transfer_type = to_trimmed_string(args.get("transferType"))
    transfer_type = transfer_type.upper() if transfer_type else None
    context_adults = to_safe_integer(_context_value(context, "adults"))
    default_pax = max(1, context_adults if context_adults is not None else 2)
    pax_count = clamp_integer(_first(args.get("paxCount"), context_adults, 2), 1, 20, default_pax)
    travel_date = to_iso_date(args.get("travelDate")) or to_iso_date(_context_value(context, "check_in_date"))

    if not destination_location_code and not destination_name:
        return _failed(tool, "Missing destinationName or destinationLocationCode.")

    request = {
        "destinationLocationCode": destination_location_code,
        "destinationName": destination_name,
        "transferType": transfer_type,
        "paxCount": pax_count,
        "travelDate": travel_date,
    }

    try:
        raw_transfers = await providers.fetch_transfer_rates(request)
        transfers = _records(raw_transfers)
        normalized = [
            {
                "id": build_transfer_id(transfer, index),
                "transferType": transfer.get("transferType"),
                "origin": transfer.get("origin"),
                "destination": transfer.get("destination"),
                "vehicle": transfer.get("vehicle"),
                "paxRange": transfer.get("paxRange"),
                "pricing": transfer.get("pricing"),
                "validity": transfer.get("validity"),
            }
            for index, transfer in enumerate(transfers[:MAX_TRANSFER_RESULTS])
        ]
    except Exception as exc:
        return _collaborator_failed(tool, exc, "Transfer lookup failed.")

    logger.info(
        "[Tool] search_transfers completed",
        extra={"destination_name": destination_name, "num_transfers": len(transfers)},
    )
    return ToolResult(ok=True, tool=tool, data={"count": len(transfers), "transfers": normalized})


def _excursion_matches(excursion: Dict[str, Any], query: Optional[str], max_price: Optional[float]) -> bool:
    if query:
        haystack = " ".join(
            value
            for value in (
                excursion.get("name"),
                excursion.get("description"),
                excursion.get("productType"),
                excursion.get("location"),
            )
            if isinstance(value, str) and value
        ).lower()
        if query not in haystack:
            return False
    if max_price is not None:
        pricing = parse_record(excursion.get("pricing")) or {}
        adult_price = to_finite_number(pricing.get("adult"))
        if adult_price is not None and adult_price > max_price:
            return False
    return True


async def execute_search_excursions(args: Dict[str, Any], providers: ToolProviders) -> ToolResult:
    tool = "search_excursions"
    query = to_trimmed_string(args.get("query"))
    query = query.lower() if query else None
    max_price = to_finite_number(args.get("maxPrice"))
    limit = clamp_integer(args.get("limit"), 1, 30, 12)

    try:
        # Filtering happens here, so ask the provider for a wider page.
        source_limit = max(limit * 3, 60)
        result = parse_record(await providers.fetch_excursions(source_limit)) or {}
        filtered = [
            excursion
            for excursion in _records(result.get("excursions"))
            if _excursion_matches(excursion, query, max_price)
        ]
        excursions = []
        for excursion in filtered[:limit]:
            pricing = parse_record(excursion.get("pricing")) or {}
            excursions.append(
                {
                    "id": (
                        to_trimmed_string(excursion.get("_id"))
                        or to_trimmed_string(excursion.get("activityCode"))
                        or to_trimmed_string(excursion.get("name"))
                        or ""
                    ),
                    "name": excursion.get("name"),
                    "productType": excursion.get("productType"),
                    "pricing": {
                        "adult": to_finite_number(pricing.get("adult")),
                        "child": to_finite_number(pricing.get("child")),
                        "currency": to_currency_code(pricing.get("currency")),
                    },
                    "childPolicy": excursion.get("childPolicy"),
                    "validity": excursion.get("validity"),
                }
            )
    except Exception as exc:
        return _collaborator_failed(tool, exc, "Excursion lookup failed.")

    logger.info(
        "[Tool] search_excursions completed",
        extra={"query": query, "num_matches": len(filtered), "num_returned": len(excursions)},
    )
    return ToolResult(
        ok=True,
        tool=tool,
        data={
            "count": len(filtered),
            "excursionFee": result.get("excursionFee"),
            "excursions": excursions,
        },
    )


async def execute_search_flights(args: Dict[str, Any], providers: ToolProviders) -> ToolResult:
    tool = "search_flights"
    origin = to_trimmed_string(args.get("origin"))
    destination = to_trimmed_string(args.get("destination"))
    departure_date = to_iso_date(args.get("departureDate"))

    if not origin or not destination or not departure_date:
        return _failed(tool, "Missing origin, destination or departureDate.")

    request = {
        "origin": origin.upper(),
        "destination": destination.upper(),
        "departureDate": departure_date,
        "returnDate": to_iso_date(args.get("returnDate")),
        "cabinClass": to_trimmed_string(args.get("cabinClass")),
        "adults": clamp_integer(args.get("adults"), 1, 9, 1),
        "children": clamp_integer(args.get("children"), 0, 6, 0),
        "currency": to_currency_code(args.get("currency")),
    }

    try:
        result = parse_record(await providers.search_flights(request)) or {}
        offers = [
            {
                "id": offer.get("id"),
                "totalPrice": offer.get("totalPrice"),
                "currency": offer.get("currency"),
                "cabinClass": offer.get("cabinClass"),
                "refundable": offer.get("refundable"),
                "outbound": offer.get("segments"),
                "inbound": offer.get("returnSegments"),
            }
            for offer in _records(result.get("offers"))[:MAX_FLIGHT_OFFERS]
        ]
    except Exception as exc:
        return _collaborator_failed(tool, exc, "Flight lookup failed.")

    logger.info(
        "[Tool] search_flights completed",
        extra={
            "origin": request["origin"],
            "destination": request["destination"],
            "num_offers": len(offers),
        },
    )
    return ToolResult(
        ok=True,
        tool=tool,
        data={
            "currency": result.get("currency"),
            "mock": bool(result.get("mock", False)),
            "offers": offers,
        },
    )


async def execute_quote_insurance(
    args: Dict[str, Any],
    providers: ToolProviders,
    context: Optional[TripContext],
) -> ToolResult:
    tool = "quote_insurance"
    start_date = to_iso_date(args.get("startDate")) or to_iso_date(_context_value(context, "check_in_date"))
    end_date = to_iso_date(args.get("endDate")) or to_iso_date(_context_value(context, "check_out_date"))
    days = to_safe_integer(args.get("days"))
    territory_code = to_trimmed_string(args.get("territoryCode")) or DEFAULT_INSURANCE_TERRITORY_CODE
    risk_amount = _first(to_finite_number(args.get("riskAmount")), DEFAULT_INSURANCE_RISK_AMOUNT)
    risk_currency = to_currency_code(args.get("riskCurrency")) or DEFAULT_INSURANCE_RISK_CURRENCY
    risk_label = to_trimmed_string(args.get("riskLabel")) or DEFAULT_INSURANCE_RISK_LABEL
    promo_code = to_trimmed_string(args.get("promoCode"))
    subrisks = unique_strings(to_array_of_strings(args.get("subrisks"), MAX_SUBRISKS), MAX_SUBRISKS)
    travelers = normalize_insurance_travelers_arg(args.get("travelers")) or build_insurance_travelers_from_context(
        context
    )

    if not start_date or not end_date:
        return _failed(tool, "Missing startDate/endDate for insurance quote.")
    if not travelers:
        return _failed(tool, "Missing travelers for insurance quote.")

    request: Dict[str, Any] = {
        "startDate": start_date,
        "endDate": end_date,
        "days": days,
        "territoryCode": territory_code,
        "riskAmount": risk_amount,
        "riskCurrency": risk_currency,
        "riskLabel": risk_label,
        "promoCode": promo_code,
        "travelers": travelers,
        "subrisks": subrisks or None,
    }

    try:
        quote = parse_record(await providers.quote_insurance(request)) or {}
        premiums = [
            {"travelerId": entry.get("travelerId"), "premium": entry.get("premium")}
            for entry in _records(quote.get("premiums"))
        ]
    except Exception as exc:
        return _collaborator_failed(tool, exc, "Insurance quote failed.")

    logger.info(
        "[Tool] quote_insurance completed",
        extra={
            "start_date": start_date,
            "end_date": end_date,
            "num_travelers": len(travelers),
        },
    )
    return ToolResult(
        ok=True,
        tool=tool,
        data={
            "query": {
                "startDate": start_date,
                "endDate": end_date,
                "days": days,
                "territoryCode": territory_code,
                "riskAmount": risk_amount,
                "riskCurrency": risk_currency,
                "riskLabel": risk_label,
                "travelerCount": len(travelers),
                "subrisks": subrisks,
            },
            "quote": {
                "totalPremium": quote.get("totalPremium"),
                "currency": quote.get("currency"),
                "sum": quote.get("sum"),
                "discountedSum": quote.get("discountedSum"),
                "premiums": premiums,
            },
        },
    )


def _first(*values: Any) -> Any:
    """First value that is not None (an explicit 0 wins over a fallback)."""
    for value in values:
        if value is not None:
            return value
    return None


async def execute_tool_call(
    call: ToolCall,
    providers: Optional[ToolProviders],
    context: Optional[TripContext] = None,
) -> ToolResult:
    if providers is None:
        logger.warning("[Tool] no tool providers configured", extra={"tool": call.name})
        return _failed(call.name, "This service is not available right now.")
    args = parse_tool_args(call.arguments)
    if call.name == "lookup_destinations":
        return await execute_lookup_destinations(args, providers)
    if call.name == "search_hotels":
        return await execute_search_hotels(args, providers, context)
    if call.name == "search_transfers":
        return await execute_search_transfers(args, providers, context)
    if call.name == "search_excursions":
        return await execute_search_excursions(args, providers)
    if call.name == "search_flights":
        return await execute_search_flights(args, providers)
    if call.name == "quote_insurance":
        return await execute_quote_insurance(args, providers, context)

    logger.warning("[Tool] unknown tool requested", extra={"tool": call.name})
    return _failed(call.name, f"Unknown tool: {call.name}")


async def dispatch_tool_calls(
    calls: Sequence[ToolCall],
    providers: Optional[ToolProviders],
    context: Optional[TripContext] = None,
) -> List[ToolResult]:
    """
    Run one round of tool calls concurrently.

    Results come back in call order, so results[i] answers calls[i]. The
    round only completes once every call has resolved.
    """
    if not calls:
        return []
    results = await asyncio.gather(*(execute_tool_call(call, providers, context) for call in calls))
    return list(results)
