import logging
from typing import List

from concierge.agents.prompts import disabled_services_notice
from concierge.state.context_state import SERVICE_KEYS, Locale, ServiceFlags
from concierge.state.package_state import MAX_FOLLOW_UPS, AssistantReply, PackageOption
from concierge.utils.coerce import unique_strings


logger = logging.getLogger(__name__)


def apply_service_availability(
    reply: AssistantReply,
    flags: ServiceFlags,
    locale: Locale,
) -> AssistantReply:
    """
    Strip platform-disabled services from every option.

    Options left without any service are dropped. When anything was removed
    a localized notice is added to follow_ups, and the stage falls back to
    "collecting" if no option survived. The input reply is not modified.
    """
    removed_any = False
    removed_services = set()
    options: List[PackageOption] = []

    for option in reply.package_options:
        updates = {}
        for key in SERVICE_KEYS:
            if getattr(option.draft, key) is not None and not flags.is_enabled(key):
                updates[key] = None
                removed_services.add(key)
        draft = option.draft.model_copy(update=updates) if updates else option.draft
        removed_any = removed_any or bool(updates)

        if draft.is_empty():
            removed_any = True
            continue
        options.append(option.model_copy(update={"draft": draft}) if updates else option)

    if not removed_any:
        return reply

    logger.info(
        "[Concierge] disabled services removed from reply",
        extra={
            "services": sorted(removed_services),
            "options_before": len(reply.package_options),
            "options_after": len(options),
        },
    )
    notice = disabled_services_notice(locale)
    # The notice always survives the cap, replacing the last follow-up if needed.
    follow_ups = [entry for entry in reply.follow_ups if entry.lower() != notice.lower()]
    follow_ups = unique_strings(follow_ups, MAX_FOLLOW_UPS - 1) + [notice]
    return reply.model_copy(
        update={
            "stage": reply.stage if options else "collecting",
            "package_options": options,
            "follow_ups": follow_ups,
        }
    )
