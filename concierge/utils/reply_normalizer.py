"""
Turn the model's final answer into a typed AssistantReply.

The final content is untrusted: it may be fenced, truncated, not JSON at all,
or JSON of the wrong shape. Every field goes through the coercion helpers and
anything unusable collapses to None or is dropped. The result is always a
valid reply; the locale fallback is returned when nothing can be salvaged.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from concierge.agents.prompts import DEFAULT_OPTION_SUMMARY, build_fallback_reply
from concierge.state.context_state import Locale
from concierge.state.package_state import (
    MAX_EXCURSION_ITEMS,
    MAX_FOLLOW_UPS,
    MAX_HIGHLIGHTS,
    MAX_MISSING,
    MAX_PACKAGE_OPTIONS,
    ApproxTotal,
    AssistantReply,
    ExcursionDraft,
    ExcursionItem,
    FlightDraft,
    HotelDraft,
    InsuranceDraft,
    PackageDraft,
    PackageOption,
    PaxRange,
    ReplyStage,
    TransferDraft,
    TransferLocation,
    TransferPricing,
    TransferVehicle,
    Validity,
)
from concierge.utils.coerce import (
    parse_json_like,
    parse_record,
    to_array_of_strings,
    to_boolean,
    to_currency_code,
    to_finite_number,
    to_iso_date,
    to_trimmed_string,
    unique_strings,
)


logger = logging.getLogger(__name__)

_STAGES = ("collecting", "proposing", "ready")
_CHARGE_TYPES = ("PER_VEHICLE", "PER_PAX")


def _string_list(value: Any, limit: int) -> List[str]:
    # Read past the cap so duplicates do not crowd out distinct entries.
    return unique_strings(to_array_of_strings(value, limit * 4), limit)


def _charge_type(value: Any) -> Optional[str]:
    raw = to_trimmed_string(value)
    return raw if raw in _CHARGE_TYPES else None


def _selected_record(value: Any) -> Optional[Dict[str, Any]]:
    """The sub-draft record, or None when missing or explicitly unselected."""
    record = parse_record(value)
    if record is None or to_boolean(record.get("selected")) is False:
        return None
    return record


def _transfer_location(value: Any) -> Optional[TransferLocation]:
    record = parse_record(value)
    if record is None:
        return None
    return TransferLocation(
        location_code=to_trimmed_string(record.get("locationCode")),
        location_type=to_trimmed_string(record.get("locationType")),
        country_code=to_trimmed_string(record.get("countryCode")),
        city_code=to_trimmed_string(record.get("cityCode")),
        zone_code=to_trimmed_string(record.get("zoneCode")),
        airport_code=to_trimmed_string(record.get("airportCode")),
        name=to_trimmed_string(record.get("name")),
    )


def _transfer_vehicle(value: Any) -> Optional[TransferVehicle]:
    record = parse_record(value)
    if record is None:
        return None
    return TransferVehicle(
        code=to_trimmed_string(record.get("code")),
        category=to_trimmed_string(record.get("category")),
        name=to_trimmed_string(record.get("name")),
        max_pax=to_finite_number(record.get("maxPax")),
        max_bags=to_finite_number(record.get("maxBags")),
    )


def _transfer_pricing(value: Any) -> Optional[TransferPricing]:
    record = parse_record(value)
    if record is None:
        return None
    return TransferPricing(
        currency=to_currency_code(record.get("currency")),
        charge_type=_charge_type(record.get("chargeType")),
        one_way=to_finite_number(record.get("oneWay")),
        return_price=to_finite_number(record.get("return")),
    )


def _pax_range(value: Any) -> Optional[PaxRange]:
    record = parse_record(value)
    if record is None:
        return None
    return PaxRange(min_pax=to_finite_number(record.get("minPax")), max_pax=to_finite_number(record.get("maxPax")))


def _validity(value: Any) -> Optional[Validity]:
    record = parse_record(value)
    if record is None:
        return None
    return Validity(valid_from=to_iso_date(record.get("from")), valid_to=to_iso_date(record.get("to")))


def normalize_hotel_draft(value: Any) -> Optional[HotelDraft]:
    record = _selected_record(value)
    if record is None:
        return None
    hotel_code = to_trimmed_string(record.get("hotelCode"))
    hotel_name = to_trimmed_string(record.get("hotelName"))
    destination_code = to_trimmed_string(record.get("destinationCode"))
    destination_name = to_trimmed_string(record.get("destinationName"))
    if not (hotel_code or hotel_name or destination_code or destination_name):
        return None
    return HotelDraft(
        hotel_code=hotel_code,
        hotel_name=hotel_name,
        destination_code=destination_code,
        destination_name=destination_name,
        check_in_date=to_iso_date(record.get("checkInDate")),
        check_out_date=to_iso_date(record.get("checkOutDate")),
        room_count=to_finite_number(record.get("roomCount")),
        guest_count=to_finite_number(record.get("guestCount")),
        meal_plan=to_trimmed_string(record.get("mealPlan")),
        non_refundable=to_boolean(record.get("nonRefundable")),
        price=to_finite_number(record.get("price")),
        currency=to_currency_code(record.get("currency")),
    )


def normalize_transfer_draft(value: Any) -> Optional[TransferDraft]:
    record = _selected_record(value)
    if record is None:
        return None
    selection_id = to_trimmed_string(record.get("selectionId"))
    label = to_trimmed_string(record.get("label"))
    transfer_type = to_trimmed_string(record.get("transferType"))
    if not (selection_id or label or transfer_type):
        return None
    return TransferDraft(
        selection_id=selection_id,
        label=label,
        price=to_finite_number(record.get("price")),
        currency=to_currency_code(record.get("currency")),
        destination_name=to_trimmed_string(record.get("destinationName")),
        destination_code=to_trimmed_string(record.get("destinationCode")),
        transfer_origin=to_trimmed_string(record.get("transferOrigin")),
        transfer_destination=to_trimmed_string(record.get("transferDestination")),
        vehicle_name=to_trimmed_string(record.get("vehicleName")),
        vehicle_max_pax=to_finite_number(record.get("vehicleMaxPax")),
        transfer_type=transfer_type,
        include_return=to_boolean(record.get("includeReturn")),
        vehicle_quantity=to_finite_number(record.get("vehicleQuantity")),
        origin=_transfer_location(record.get("origin")),
        destination=_transfer_location(record.get("destination")),
        vehicle=_transfer_vehicle(record.get("vehicle")),
        pax_range=_pax_range(record.get("paxRange")),
        pricing=_transfer_pricing(record.get("pricing")),
        validity=_validity(record.get("validity")),
        charge_type=_charge_type(record.get("chargeType")),
        pax_count=to_finite_number(record.get("paxCount")),
    )


def normalize_flight_draft(value: Any) -> Optional[FlightDraft]:
    record = _selected_record(value)
    if record is None:
        return None
    label = to_trimmed_string(record.get("label"))
    origin = to_trimmed_string(record.get("origin"))
    destination = to_trimmed_string(record.get("destination"))
    if not (label or origin or destination):
        return None
    return FlightDraft(
        selection_id=to_trimmed_string(record.get("selectionId")),
        label=label,
        price=to_finite_number(record.get("price")),
        currency=to_currency_code(record.get("currency")),
        origin=origin,
        destination=destination,
        departure_date=to_iso_date(record.get("departureDate")),
        return_date=to_iso_date(record.get("returnDate")),
        cabin_class=to_trimmed_string(record.get("cabinClass")),
        notes=to_trimmed_string(record.get("notes")),
    )


def normalize_excursion_draft(value: Any) -> Optional[ExcursionDraft]:
    record = _selected_record(value)
    if record is None:
        return None
    items: List[ExcursionItem] = []
    raw_items = record.get("items") if isinstance(record.get("items"), list) else []
    for entry in raw_items:
        item = parse_record(entry)
        item_id = to_trimmed_string(item.get("id")) if item else None
        if not item_id:
            continue
        items.append(
            ExcursionItem(
                id=item_id,
                name=to_trimmed_string(item.get("name")),
                price=to_finite_number(item.get("price")),
                currency=to_currency_code(item.get("currency")),
            )
        )
        if len(items) >= MAX_EXCURSION_ITEMS:
            break

    label = to_trimmed_string(record.get("label"))
    if not label and not items:
        return None
    return ExcursionDraft(
        label=label,
        price=to_finite_number(record.get("price")),
        currency=to_currency_code(record.get("currency")),
        items=items,
    )


def normalize_insurance_draft(value: Any) -> Optional[InsuranceDraft]:
    record = _selected_record(value)
    if record is None:
        return None
    plan_id = to_trimmed_string(record.get("planId"))
    plan_label = to_trimmed_string(record.get("planLabel"))
    if not plan_id and not plan_label:
        return None
    return InsuranceDraft(
        selection_id=to_trimmed_string(record.get("selectionId")),
        label=to_trimmed_string(record.get("label")),
        price=to_finite_number(record.get("price")),
        currency=to_currency_code(record.get("currency")),
        plan_id=plan_id,
        plan_label=plan_label,
        note=to_trimmed_string(record.get("note")),
        risk_amount=to_finite_number(record.get("riskAmount")),
        risk_currency=to_currency_code(record.get("riskCurrency")),
        risk_label=to_trimmed_string(record.get("riskLabel")),
        start_date=to_iso_date(record.get("startDate")),
        end_date=to_iso_date(record.get("endDate")),
        days=to_finite_number(record.get("days")),
    )


def normalize_draft(value: Any) -> PackageDraft:
    record = parse_record(value) or {}
    return PackageDraft(
        hotel=normalize_hotel_draft(record.get("hotel")),
        transfer=normalize_transfer_draft(record.get("transfer")),
        flight=normalize_flight_draft(record.get("flight")),
        excursion=normalize_excursion_draft(record.get("excursion")),
        insurance=normalize_insurance_draft(record.get("insurance")),
    )


def normalize_confidence(value: Any) -> Optional[float]:
    number = to_finite_number(value)
    if number is None:
        return None
    return max(0.0, min(1.0, round(number, 2)))


def normalize_option(value: Any, index: int) -> Optional[PackageOption]:
    """Coerce one option; None when it carries no selected service."""
    record = parse_record(value)
    if record is None:
        return None
    draft = normalize_draft(record.get("draft"))
    if draft.is_empty():
        return None

    approx_total = None
    approx_record = parse_record(record.get("approxTotal"))
    if approx_record is not None:
        approx_total = ApproxTotal(
            amount=to_finite_number(approx_record.get("amount")),
            currency=to_currency_code(approx_record.get("currency")),
            note=to_trimmed_string(approx_record.get("note")),
        )

    return PackageOption(
        id=to_trimmed_string(record.get("id")) or f"option-{index + 1}",
        title=to_trimmed_string(record.get("title")) or f"Option {index + 1}",
        summary=to_trimmed_string(record.get("summary")) or DEFAULT_OPTION_SUMMARY,
        confidence=normalize_confidence(record.get("confidence")),
        approx_total=approx_total,
        highlights=_string_list(record.get("highlights"), MAX_HIGHLIGHTS),
        draft=draft,
    )


def normalize_stage(value: Any) -> ReplyStage:
    raw = to_trimmed_string(value)
    return raw if raw in _STAGES else "collecting"  # type: ignore[return-value]


def apply_stage_invariants(reply: AssistantReply) -> AssistantReply:
    if reply.package_options and reply.stage == "collecting":
        reply.stage = "proposing"
    if reply.stage == "ready" and not reply.package_options:
        reply.stage = "collecting"
    return reply


def normalize_reply_from_model(raw_content: Any, locale: Locale) -> AssistantReply:
    """
    Parse the model's final content into an AssistantReply. Never raises.

    Options that end up without any selected service are dropped, at most
    three survive, and the stage is reconciled with the surviving options.
    """
    fallback = build_fallback_reply(locale)
    record = parse_record(parse_json_like(raw_content))
    if record is None:
        logger.warning(
            "[Concierge] model reply is not a JSON object, using fallback",
            extra={"content_preview": str(raw_content or "")[:200]},
        )
        return fallback

    try:
        raw_options = record.get("packageOptions") if isinstance(record.get("packageOptions"), list) else []
        options: List[PackageOption] = []
        for index, raw_option in enumerate(raw_options):
            option = normalize_option(raw_option, index)
            if option is not None:
                options.append(option)
        reply = AssistantReply(
            message=to_trimmed_string(record.get("message")) or fallback.message,
            stage=normalize_stage(record.get("stage")),
            missing=_string_list(record.get("missing"), MAX_MISSING),
            follow_ups=_string_list(record.get("followUps"), MAX_FOLLOW_UPS),
            package_options=options[:MAX_PACKAGE_OPTIONS],
        )
    except ValidationError as exc:
        logger.warning(
            "[Concierge] model reply failed validation, using fallback",
            extra={"error": str(exc)[:200]},
        )
        return fallback

    return apply_stage_invariants(reply)
