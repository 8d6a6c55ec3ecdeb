import logging
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional

from concierge.state.context_state import (
    ConversationMessage,
    FavoriteHotel,
    ProjectContext,
    RecentAssistantSession,
    RecentBooking,
    RecentSearch,
    ServiceFlags,
    UserProfile,
    UserSignals,
)
from concierge.utils.coerce import (
    parse_record,
    to_array_of_strings,
    to_finite_number,
    to_iso_date,
    to_iso_datetime,
    to_safe_integer,
    to_trimmed_string,
    unique_strings,
)


logger = logging.getLogger(__name__)

MAX_CONVERSATION_MESSAGES = 14
MAX_USER_SIGNAL_ITEMS = 5
MAX_RECENT_BOOKINGS = 3
MAX_RECENT_SESSIONS = 4

ServiceFlagLoader = Callable[[], Awaitable[Mapping[str, Any]]]
UserSignalLoader = Callable[[str], Awaitable[Optional[Mapping[str, Any]]]]


def sanitize_conversation(
    messages: Optional[Iterable[Any]],
    max_messages: int = MAX_CONVERSATION_MESSAGES,
) -> List[ConversationMessage]:
    """
    Keep only non-empty user/assistant turns, trimmed, most recent last.

    Accepts ConversationMessage instances or raw dicts with role/content.
    An empty result means the caller should answer with the fallback reply
    without calling a model.
    """
    sanitized: List[ConversationMessage] = []
    for message in messages or []:
        if isinstance(message, ConversationMessage):
            role, content = message.role, message.content
        else:
            record = parse_record(message)
            if record is None:
                continue
            role, content = record.get("role"), record.get("content")
        if role not in ("user", "assistant") or not isinstance(content, str):
            continue
        trimmed = content.strip()
        if not trimmed:
            continue
        sanitized.append(ConversationMessage(role=role, content=trimmed))
    if max_messages <= 0:
        return []
    return sanitized[-max_messages:]


def _count_guests(rooms: Any) -> Optional[int]:
    if not isinstance(rooms, list):
        return None
    total = 0
    for entry in rooms:
        record = parse_record(entry)
        if record is None:
            continue
        adults = max(0, to_safe_integer(record.get("adults")) or 0)
        children = record.get("childrenAges")
        total += adults + (len(children) if isinstance(children, list) else 0)
    return total if total > 0 else None


def normalize_user_signals(raw: Any) -> Optional[UserSignals]:
    """
    Coerce the user-signal loader's payload into UserSignals.

    The loader returns raw documents (recent searches with their request
    params, favorites, bookings with their payload, previous assistant
    sessions). Returns None when nothing useful is left.
    """
    record = parse_record(raw)
    if record is None:
        return None

    profile_record = parse_record(record.get("profile"))
    profile = None
    if profile_record and (
        to_trimmed_string(profile_record.get("name")) or to_trimmed_string(profile_record.get("email"))
    ):
        profile = UserProfile(
            name=to_trimmed_string(profile_record.get("name")),
            email=to_trimmed_string(profile_record.get("email")),
        )

    recent_searches: List[RecentSearch] = []
    for entry in _records(record.get("recentSearches"), MAX_USER_SIGNAL_ITEMS):
        summary = parse_record(entry.get("resultSummary")) or {}
        params = parse_record(entry.get("params")) or {}
        recent_searches.append(
            RecentSearch(
                destination_name=(
                    to_trimmed_string(summary.get("destinationName"))
                    or to_trimmed_string(params.get("destinationCode"))
                    or to_trimmed_string(params.get("hotelCode"))
                ),
                destination_code=(
                    to_trimmed_string(summary.get("destinationCode"))
                    or to_trimmed_string(params.get("destinationCode"))
                ),
                check_in_date=to_iso_date(params.get("checkInDate")),
                check_out_date=to_iso_date(params.get("checkOutDate")),
                travelers=_count_guests(params.get("rooms")),
                created_at=to_iso_datetime(entry.get("createdAt")),
            )
        )

    favorite_hotels = [
        FavoriteHotel(
            hotel_code=to_trimmed_string(entry.get("hotelCode")),
            name=to_trimmed_string(entry.get("name")),
            city=to_trimmed_string(entry.get("city")),
            rating=to_finite_number(entry.get("rating")),
        )
        for entry in _records(record.get("favoriteHotels"), MAX_USER_SIGNAL_ITEMS)
    ]

    recent_bookings: List[RecentBooking] = []
    for entry in _records(record.get("recentBookings"), MAX_RECENT_BOOKINGS):
        payload = parse_record(entry.get("payload")) or {}
        hotel = parse_record(payload.get("hotel")) or {}
        recent_bookings.append(
            RecentBooking(
                destination_name=(
                    to_trimmed_string(payload.get("destinationName"))
                    or to_trimmed_string(payload.get("destinationCode"))
                ),
                hotel_name=(
                    to_trimmed_string(payload.get("hotelName"))
                    or to_trimmed_string(payload.get("hotelCode"))
                    or to_trimmed_string(hotel.get("name"))
                ),
                check_in_date=to_iso_date(payload.get("checkInDate")),
                check_out_date=to_iso_date(payload.get("checkOutDate")),
                created_at=to_iso_datetime(entry.get("createdAt")),
            )
        )

    recent_sessions = [
        RecentAssistantSession(
            stage=to_trimmed_string(entry.get("lastStage")),
            missing=unique_strings(to_array_of_strings(entry.get("lastMissing"), 8), 8),
            package_options=to_safe_integer(entry.get("lastPackageOptions")),
            updated_at=to_iso_datetime(entry.get("updatedAt")),
        )
        for entry in _records(record.get("recentAssistantSessions"), MAX_RECENT_SESSIONS)
    ]

    signals = UserSignals(
        profile=profile,
        recent_searches=recent_searches,
        favorite_hotels=favorite_hotels,
        recent_bookings=recent_bookings,
        recent_assistant_sessions=recent_sessions,
    )
    return signals if signals.has_signals() else None


def _records(value: Any, limit: int) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [record for record in (parse_record(entry) for entry in value) if record is not None][:limit]


async def load_project_context(
    flag_loader: Optional[ServiceFlagLoader],
    signal_loader: Optional[UserSignalLoader],
    user_id: Optional[str],
    full_context: bool = True,
) -> ProjectContext:
    """
    Read the platform snapshot for one turn.

    Service flags fall back to all-enabled defaults when the loader fails;
    user signals are optional and any loader failure just drops them.
    """
    service_flags = ServiceFlags()
    if flag_loader is not None:
        try:
            service_flags = ServiceFlags.from_raw(await flag_loader())
        except Exception:
            logger.exception("[Concierge] Failed to load service flags, using defaults")
            service_flags = ServiceFlags()

    resolved_user_id = to_trimmed_string(user_id)
    if not full_context or not resolved_user_id or signal_loader is None:
        return ProjectContext(service_flags=service_flags, user_signals=None)

    try:
        raw_signals = await signal_loader(resolved_user_id)
    except Exception:
        logger.exception(
            "[Concierge] Failed to load user signals",
            extra={"user_id": resolved_user_id},
        )
        return ProjectContext(service_flags=service_flags, user_signals=None)

    return ProjectContext(service_flags=service_flags, user_signals=normalize_user_signals(raw_signals))
