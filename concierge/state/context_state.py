from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from concierge.utils.coerce import parse_record, to_finite_number, to_trimmed_string


Locale = Literal["hy", "en", "ru"]
SUPPORTED_LOCALES: Tuple[str, ...] = ("hy", "en", "ru")
DEFAULT_LOCALE: Locale = "hy"

ServiceKey = Literal["hotel", "transfer", "flight", "excursion", "insurance"]
SERVICE_KEYS: Tuple[ServiceKey, ...] = ("hotel", "transfer", "flight", "excursion", "insurance")


def normalize_locale(value: Any) -> Locale:
    if isinstance(value, str) and value.strip().lower() in SUPPORTED_LOCALES:
        return value.strip().lower()  # type: ignore[return-value]
    return DEFAULT_LOCALE


class WireModel(BaseModel):
    """
    Base for models that cross the model/caller boundary.

    Attributes are snake_case in Python and camelCase on the wire;
    use model_dump(by_alias=True) to produce the wire shape.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class TripContext(WireModel):
    """
    Structured trip parameters sent alongside the chat history.

    Read-only for the whole turn: tools fall back to these values when the
    model omits an argument, but nothing ever writes back into it.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    destination_code: Optional[str] = None
    destination_name: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    room_count: Optional[float] = None
    adults: Optional[float] = None
    children: Optional[float] = None
    budget_amount: Optional[float] = None
    budget_currency: Optional[str] = None

    @classmethod
    def from_raw(cls, value: Any) -> Optional["TripContext"]:
        """Build a context from an untrusted request body; None if not an object."""
        record = parse_record(value)
        if record is None:
            return None
        return cls(
            destination_code=to_trimmed_string(record.get("destinationCode")),
            destination_name=to_trimmed_string(record.get("destinationName")),
            check_in_date=to_trimmed_string(record.get("checkInDate")),
            check_out_date=to_trimmed_string(record.get("checkOutDate")),
            room_count=to_finite_number(record.get("roomCount")),
            adults=to_finite_number(record.get("adults")),
            children=to_finite_number(record.get("children")),
            budget_amount=to_finite_number(record.get("budgetAmount")),
            budget_currency=to_trimmed_string(record.get("budgetCurrency")),
        )


class ServiceFlags(BaseModel):
    """Platform-wide switches; a False flag means the service cannot be sold."""

    hotel: bool = True
    transfer: bool = True
    flight: bool = True
    excursion: bool = True
    insurance: bool = True

    @classmethod
    def from_raw(cls, value: Any) -> "ServiceFlags":
        record = parse_record(value) or {}
        updates = {key: record[key] for key in SERVICE_KEYS if isinstance(record.get(key), bool)}
        return cls(**updates)

    def is_enabled(self, key: str) -> bool:
        return bool(getattr(self, key, True))


class UserProfile(WireModel):
    name: Optional[str] = None
    email: Optional[str] = None


class RecentSearch(WireModel):
    destination_name: Optional[str] = None
    destination_code: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    travelers: Optional[int] = None
    created_at: Optional[str] = None


class FavoriteHotel(WireModel):
    hotel_code: Optional[str] = None
    name: Optional[str] = None
    city: Optional[str] = None
    rating: Optional[float] = None


class RecentBooking(WireModel):
    destination_name: Optional[str] = None
    hotel_name: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    created_at: Optional[str] = None


class RecentAssistantSession(WireModel):
    stage: Optional[str] = None
    missing: List[str] = Field(default_factory=list)
    package_options: Optional[int] = None
    updated_at: Optional[str] = None


class UserSignals(WireModel):
    """Behaviour snapshot used only to personalize the prompt."""

    profile: Optional[UserProfile] = None
    recent_searches: List[RecentSearch] = Field(default_factory=list)
    favorite_hotels: List[FavoriteHotel] = Field(default_factory=list)
    recent_bookings: List[RecentBooking] = Field(default_factory=list)
    recent_assistant_sessions: List[RecentAssistantSession] = Field(default_factory=list)

    def has_signals(self) -> bool:
        return bool(
            self.profile
            or self.recent_searches
            or self.favorite_hotels
            or self.recent_bookings
            or self.recent_assistant_sessions
        )


class ProjectContext(BaseModel):
    """Platform snapshot read once at the start of a turn and never refreshed."""

    service_flags: ServiceFlags = Field(default_factory=ServiceFlags)
    user_signals: Optional[UserSignals] = None

    def service_flags_snapshot(self) -> Dict[str, bool]:
        return self.service_flags.model_dump()
