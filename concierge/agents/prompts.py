import json
import os
from typing import Dict, Optional

from concierge.state.context_state import Locale, ProjectContext, TripContext
from concierge.state.package_state import AssistantReply


agent_instructions_path = os.path.join(os.path.dirname(__file__), "../artifacts/concierge/instruction.md")

# read the instructions
with open(agent_instructions_path, "r", encoding="utf-8") as f:
    _instructions = f.read().strip()


LOCALE_LANGUAGE_NAMES: Dict[str, str] = {
    "hy": "Armenian",
    "en": "English",
    "ru": "Russian",
}

DEFAULT_MISSING = ["destination", "dates", "travelers"]

_FALLBACK_MESSAGES: Dict[str, str] = {
    "en": "I can build your package now. Share destination, dates, traveler count, and your rough budget.",
    "ru": "Я готов собрать ваш тур. Напишите направление, даты, количество взрослых/детей и примерный бюджет.",
    "hy": "Պատրաստ եմ հավաքել ձեր փաթեթը։ Գրեք ուղղությունը, ամսաթվերը, մեծահասակ/երեխա քանակը և մոտավոր բյուջեն։",
}

_UNAVAILABLE_MESSAGES: Dict[str, str] = {
    "en": "AI is temporarily unavailable. Share destination, dates and budget, and our manager can assist.",
    "ru": "AI временно недоступен. Напишите направление, даты и бюджет, и менеджер поможет вручную.",
    "hy": "AI-ը ժամանակավորապես հասանելի չէ։ Գրեք ուղղությունը, ամսաթվերը և բյուջեն, և մենեջերը կօգնի։",
}

_DISABLED_SERVICES_NOTICES: Dict[str, str] = {
    "en": "Some services are currently disabled and were removed from the options.",
    "ru": "Некоторые услуги сейчас отключены и были скрыты из вариантов.",
    "hy": "Որոշ ծառայություններ այժմ անջատված են և հեռացվել են տարբերակներից։",
}

DEFAULT_OPTION_SUMMARY = "Curated by your travel concierge."


def build_fallback_reply(locale: Locale) -> AssistantReply:
    """Reply used whenever the model output cannot be trusted or is missing."""
    return AssistantReply(
        message=_FALLBACK_MESSAGES.get(locale, _FALLBACK_MESSAGES["en"]),
        stage="collecting",
        missing=list(DEFAULT_MISSING),
        follow_ups=[],
        package_options=[],
    )


def build_unavailable_reply(locale: Locale) -> AssistantReply:
    reply = build_fallback_reply(locale)
    reply.message = _UNAVAILABLE_MESSAGES.get(locale, _UNAVAILABLE_MESSAGES["en"])
    return reply


def disabled_services_notice(locale: Locale) -> str:
    return _DISABLED_SERVICES_NOTICES.get(locale, _DISABLED_SERVICES_NOTICES["en"])


def build_system_prompt(
    locale: Locale,
    context: Optional[TripContext],
    project_context: ProjectContext,
) -> str:
    """
    Assemble the single system instruction for a turn.

    Tool results never go here; they reach the model as tool messages
    during the loop.
    """
    language = LOCALE_LANGUAGE_NAMES.get(locale, "English")
    user_signals = (
        project_context.user_signals.model_dump(by_alias=True) if project_context.user_signals else None
    )
    context_snapshot = context.model_dump(by_alias=True) if context else {}
    return "\n".join(
        [
            "You are the concierge AI of a premium travel agency, building complete travel packages.",
            f"Always answer in {language}.",
            _instructions,
            f"Service availability snapshot: {_dumps(project_context.service_flags_snapshot())}",
            f"User signals snapshot: {_dumps(user_signals)}",
            f"Context snapshot: {_dumps(context_snapshot)}",
        ]
    )


def _dumps(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
