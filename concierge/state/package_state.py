from typing import Dict, List, Literal, Optional

from pydantic import Field

from concierge.state.context_state import SERVICE_KEYS, WireModel


ReplyStage = Literal["collecting", "proposing", "ready"]

MAX_PACKAGE_OPTIONS = 3
MAX_HIGHLIGHTS = 5
MAX_MISSING = 8
MAX_FOLLOW_UPS = 5
MAX_EXCURSION_ITEMS = 8


class HotelDraft(WireModel):
    selected: Literal[True] = True
    hotel_code: Optional[str] = None
    hotel_name: Optional[str] = None
    destination_code: Optional[str] = None
    destination_name: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    room_count: Optional[float] = None
    guest_count: Optional[float] = None
    meal_plan: Optional[str] = None
    non_refundable: Optional[bool] = None
    price: Optional[float] = None
    currency: Optional[str] = None


class TransferLocation(WireModel):
    location_code: Optional[str] = None
    location_type: Optional[str] = None
    country_code: Optional[str] = None
    city_code: Optional[str] = None
    zone_code: Optional[str] = None
    airport_code: Optional[str] = None
    name: Optional[str] = None


class TransferVehicle(WireModel):
    code: Optional[str] = None
    category: Optional[str] = None
    name: Optional[str] = None
    max_pax: Optional[float] = None
    max_bags: Optional[float] = None


ChargeType = Literal["PER_VEHICLE", "PER_PAX"]


class TransferPricing(WireModel):
    currency: Optional[str] = None
    charge_type: Optional[ChargeType] = None
    one_way: Optional[float] = None
    # "return" is a keyword, so the wire name is set explicitly.
    return_price: Optional[float] = Field(default=None, alias="return")


class PaxRange(WireModel):
    min_pax: Optional[float] = None
    max_pax: Optional[float] = None


class Validity(WireModel):
    # Same problem as above: "from" cannot be an attribute name.
    valid_from: Optional[str] = Field(default=None, alias="from")
    valid_to: Optional[str] = Field(default=None, alias="to")


class TransferDraft(WireModel):
    selected: Literal[True] = True
    selection_id: Optional[str] = None
    label: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    destination_name: Optional[str] = None
    destination_code: Optional[str] = None
    transfer_origin: Optional[str] = None
    transfer_destination: Optional[str] = None
    vehicle_name: Optional[str] = None
    vehicle_max_pax: Optional[float] = None
    transfer_type: Optional[str] = None
    include_return: Optional[bool] = None
    vehicle_quantity: Optional[float] = None
    origin: Optional[TransferLocation] = None
    destination: Optional[TransferLocation] = None
    vehicle: Optional[TransferVehicle] = None
    pax_range: Optional[PaxRange] = None
    pricing: Optional[TransferPricing] = None
    validity: Optional[Validity] = None
    charge_type: Optional[ChargeType] = None
    pax_count: Optional[float] = None


class FlightDraft(WireModel):
    selected: Literal[True] = True
    selection_id: Optional[str] = None
    label: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[str] = None
    return_date: Optional[str] = None
    cabin_class: Optional[str] = None
    notes: Optional[str] = None


class ExcursionItem(WireModel):
    id: str
    name: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None


class ExcursionDraft(WireModel):
    selected: Literal[True] = True
    label: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    items: List[ExcursionItem] = Field(default_factory=list)


class InsuranceDraft(WireModel):
    selected: Literal[True] = True
    selection_id: Optional[str] = None
    label: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    plan_id: Optional[str] = None
    plan_label: Optional[str] = None
    note: Optional[str] = None
    risk_amount: Optional[float] = None
    risk_currency: Optional[str] = None
    risk_label: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    days: Optional[float] = None


class PackageDraft(WireModel):
    hotel: Optional[HotelDraft] = None
    transfer: Optional[TransferDraft] = None
    flight: Optional[FlightDraft] = None
    excursion: Optional[ExcursionDraft] = None
    insurance: Optional[InsuranceDraft] = None

    def services(self) -> List[str]:
        """Service keys that carry a selected sub-draft, in canonical order."""
        return [key for key in SERVICE_KEYS if getattr(self, key) is not None]

    def is_empty(self) -> bool:
        return not self.services()


class ApproxTotal(WireModel):
    amount: Optional[float] = None
    currency: Optional[str] = None
    note: Optional[str] = None


class PackageOption(WireModel):
    id: str
    title: str
    summary: str
    confidence: Optional[float] = None
    approx_total: Optional[ApproxTotal] = None
    highlights: List[str] = Field(default_factory=list)
    draft: PackageDraft = Field(default_factory=PackageDraft)


class AssistantReply(WireModel):
    message: str
    stage: ReplyStage = "collecting"
    missing: List[str] = Field(default_factory=list)
    follow_ups: List[str] = Field(default_factory=list)
    package_options: List[PackageOption] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, object]:
        return self.model_dump(by_alias=True)

