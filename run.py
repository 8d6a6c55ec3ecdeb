import asyncio
import json
import logging
import uuid
from typing import List

from dotenv import load_dotenv

from concierge.agents.package_agent import build_package_agent
from concierge.state.context_state import ConversationMessage, TripContext, normalize_locale
from concierge.state.tool_state import ProgressEvent
from concierge.tools.persistence import InMemorySessionStore
from concierge.tools.providers import GatewayClient
from concierge.utils.errors import ModelUnavailableError
from settings import AppSettings


# logging.basicConfig(
#     level=logging.DEBUG,
#     format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
# )

load_dotenv()

logger = logging.getLogger(__name__)


def print_progress(event: ProgressEvent) -> None:
    if event.type == "model_start":
        print(f"  [round {event.round}] asking {event.model}...")
    elif event.type == "tool_call":
        print(f"  [round {event.round}] calling {event.tool}")
    elif event.type == "tool_result":
        print(f"  [round {event.round}] {event.tool} -> {'ok' if event.ok else 'failed'}")
    elif event.type == "finalizing":
        print("  finalizing reply...")


def print_reply(output) -> None:
    reply = output.reply
    print(f"Concierge: {reply.message}")
    for option in reply.package_options:
        total = option.approx_total
        total_text = (
            f"{total.amount:.2f} {total.currency or ''}".strip()
            if total is not None and total.amount is not None
            else "price on request"
        )
        print(f"  - {option.title} ({', '.join(option.draft.services())}): {total_text}")
    for follow_up in reply.follow_ups:
        print(f"  > {follow_up}")
    if reply.missing:
        print(f"  missing: {', '.join(reply.missing)}")

    audit = output.meta.price_audit
    print(f"[DEBUG META]: model={output.meta.model}, tool_calls={output.meta.tool_calls}, stage={reply.stage}")
    if audit.issues:
        print(f"[DEBUG AUDIT]: {json.dumps([issue.model_dump(by_alias=True) for issue in audit.issues])}")


async def main():
    settings = AppSettings()
    locale = normalize_locale(settings.locale)

    gateway = None
    if settings.gateway_url:
        gateway = GatewayClient(
            settings.gateway_url,
            api_key=settings.gateway_api_key,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
    else:
        print("[WARN] CONCIERGE_GATEWAY_URL is not set; tools will report services as unavailable.")

    session_store = InMemorySessionStore()
    agent = build_package_agent(
        settings,
        tool_providers=gateway,
        flag_loader=gateway.load_service_flags if gateway else None,
        signal_loader=gateway.load_user_signals if gateway else None,
        session_store=session_store,
    )

    session_id = str(uuid.uuid4())
    user_id = "user-1"
    context = TripContext()
    history: List[ConversationMessage] = []

    print(f"Session created with ID: {session_id}")
    print("-----")
    print("Package Concierge here! Tell me where and when you want to travel.")
    print("You can Type 'exit' or 'quit' to end the session.")
    print("Type 'context {json}' to set trip context, e.g. context {\"destinationName\": \"Dubai\"}.")
    print("-----")

    # Main interaction loop
    while True:
        user_input = input("You: ").strip()
        if user_input.lower() in ["exit", "quit"]:
            print("Exiting Package Concierge. Safe travels!")
            break

        if user_input.lower().startswith("context "):
            try:
                context = TripContext.from_raw(json.loads(user_input[len("context "):])) or TripContext()
            except ValueError as e:
                print(f"[ERROR] Context must be a JSON object: {e}")
                continue
            print(f"[DEBUG CONTEXT]: {context.model_dump(by_alias=True, exclude_none=True)}")
            continue

        history.append(ConversationMessage(role="user", content=user_input))
        try:
            output = await agent.generate_reply(
                locale,
                history,
                context=context,
                user_id=user_id,
                on_progress=print_progress,
            )
        except ModelUnavailableError as e:
            # Every model in the chain failed; keep the session alive.
            print(f"[ERROR] No model could answer: {e}")
            print("Please try sending your message again.")
            history.pop()
            continue

        print_reply(output)
        history.append(ConversationMessage(role="assistant", content=output.reply.message))

        await agent.persist_turn(
            session_id,
            locale,
            user_id,
            user_input,
            context,
            output.reply,
            output.meta.model,
            output.meta.tool_calls,
            output.meta.price_audit,
        )
        logger.debug("[Concierge] stored messages", extra={"count": len(session_store.messages_for(session_id))})


if __name__ == "__main__":
    asyncio.run(main())
