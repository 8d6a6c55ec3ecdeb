import asyncio
from typing import Any, Dict, List

import pytest

from concierge.state.context_state import TripContext
from concierge.state.tool_state import ToolCall
from concierge.tools.tools import (
    build_insurance_travelers_from_context,
    build_rooms,
    build_transfer_id,
    dispatch_tool_calls,
    execute_tool_call,
    normalize_insurance_travelers_arg,
    parse_tool_args,
)
from concierge.utils.errors import GatewayError


class DummyProviders:
    """
    In-memory stand-in for the gateway collaborators.

    Records every request it receives; `errors` maps a method name to the
    exception it should raise and `delays` to a sleep before answering.
    """

    def __init__(self, errors=None, delays=None) -> None:
        self.requests: List[Any] = []
        self.errors: Dict[str, Exception] = errors or {}
        self.delays: Dict[str, float] = delays or {}

    async def _answer(self, method: str, request: Any, payload: Any) -> Any:
        self.requests.append((method, request))
        await asyncio.sleep(self.delays.get(method, 0))
        if method in self.errors:
            raise self.errors[method]
        return payload

    async def list_destinations(self, request):
        return await self._answer(
            "list_destinations",
            request,
            {
                "countryCode": "AE",
                "destinations": [
                    {"destinationCode": "DXB", "name": "Dubai", "internal": True},
                    {"destinationCode": "AUH", "name": "Abu Dhabi"},
                ],
            },
        )

    async def search_hotels(self, request):
        return await self._answer(
            "search_hotels",
            request,
            {
                "destination": "Dubai",
                "propertyCount": 2,
                "currency": "USD",
                "hotels": [
                    {"code": "H1", "name": "Atlantis", "minPrice": 1000},
                    {"code": "H2", "name": "Rove", "minPrice": 300, "currency": "EUR"},
                ],
            },
        )

    async def fetch_transfer_rates(self, request):
        return await self._answer(
            "fetch_transfer_rates",
            request,
            [
                {"_id": "tr-1", "transferType": "PRIVATE", "pricing": {"oneWay": 40}},
                {
                    "transferType": "PRIVATE",
                    "destination": {"locationCode": "DXB"},
                    "vehicle": {"name": "Sedan"},
                    "pricing": {"oneWay": 45},
                },
            ],
        )

    async def fetch_excursions(self, limit):
        return await self._answer(
            "fetch_excursions",
            limit,
            {
                "excursionFee": 5,
                "excursions": [
                    {"_id": "ex-1", "name": "Desert Safari", "pricing": {"adult": 60, "child": 45, "currency": "usd"}},
                    {"_id": "ex-2", "name": "Dhow Cruise", "pricing": {"adult": 40, "currency": "USD"}},
                    {"activityCode": "ex-3", "name": "Desert Balloon", "pricing": {"adult": 250, "currency": "USD"}},
                ],
            },
        )

    async def search_flights(self, request):
        return await self._answer(
            "search_flights",
            request,
            {
                "currency": "USD",
                "offers": [
                    {
                        "id": "FL-1",
                        "totalPrice": 320,
                        "currency": "USD",
                        "segments": [{"origin": "EVN", "destination": "DXB"}],
                        "returnSegments": None,
                    }
                ],
            },
        )

    async def quote_insurance(self, request):
        return await self._answer(
            "quote_insurance",
            request,
            {
                "totalPremium": 25,
                "currency": "EUR",
                "premiums": [{"travelerId": "adult-1", "premium": 12.5}, "bad"],
            },
        )


def _call(name, arguments=None, call_id="call-1"):
    return ToolCall(id=call_id, name=name, arguments=arguments)


CONTEXT = TripContext(
    destination_code="DXB",
    destination_name="Dubai",
    check_in_date="2025-03-01",
    check_out_date="2025-03-05",
    adults=3,
    children=1,
    budget_currency="eur",
)


def test_parse_tool_args_accepts_only_objects():
    assert parse_tool_args('{"query": "dubai"}') == {"query": "dubai"}
    assert parse_tool_args({"query": "dubai"}) == {"query": "dubai"}
    assert parse_tool_args("[1, 2]") == {}
    assert parse_tool_args("{not json") == {}
    assert parse_tool_args(None) == {}


def test_build_rooms_spreads_guests_across_rooms():
    assert build_rooms(5, 3, 2) == [
        {"roomIdentifier": 1, "adults": 3, "childrenAges": [8, 8]},
        {"roomIdentifier": 2, "adults": 2, "childrenAges": [8]},
    ]
    # Every room needs an adult.
    assert [room["adults"] for room in build_rooms(1, 0, 3)] == [1, 1, 1]


def test_insurance_travelers_from_context_and_arguments():
    travelers = build_insurance_travelers_from_context(CONTEXT)
    assert [traveler["id"] for traveler in travelers] == ["adult-1", "adult-2", "adult-3", "child-1"]
    assert [traveler["age"] for traveler in travelers] == [30, 30, 30, 8]
    assert len(build_insurance_travelers_from_context(None)) == 1

    normalized = normalize_insurance_travelers_arg(
        [{"age": 41, "subrisks": ["covid", "COVID"]}, {"age": "unknown"}, {"id": "kid", "age": 7}]
    )
    assert normalized[0]["id"] == "traveler-1"
    assert normalized[0]["subrisks"] == ["covid"]
    assert [traveler["id"] for traveler in normalized] == ["traveler-1", "kid"]


def test_build_transfer_id_prefers_explicit_ids():
    assert build_transfer_id({"_id": "abc"}, 0) == "abc"
    assert (
        build_transfer_id({"transferType": "SHARED", "destination": {"name": "Marina"}, "vehicle": {}}, 2)
        == "SHARED-Marina-vehicle-3"
    )


@pytest.mark.asyncio
async def test_lookup_destinations_normalizes_entries():
    providers = DummyProviders()

    result = await execute_tool_call(_call("lookup_destinations", '{"query": "dub", "limit": 1}'), providers)

    assert result.ok is True
    assert result.data == {"countryCode": "AE", "destinations": [{"destinationCode": "DXB", "name": "Dubai"}]}
    assert providers.requests == [("list_destinations", {"q": "dub", "countryCode": "AE", "limit": 1})]


@pytest.mark.asyncio
async def test_search_hotels_falls_back_to_trip_context():
    providers = DummyProviders()

    result = await execute_tool_call(_call("search_hotels", '{"roomCount": 2}'), providers, CONTEXT)

    assert result.ok is True
    _, request = providers.requests[0]
    assert request["destinationCode"] == "DXB"
    assert request["checkInDate"] == "2025-03-01"
    assert request["currency"] == "EUR"
    assert request["rooms"] == [
        {"roomIdentifier": 1, "adults": 2, "childrenAges": [8]},
        {"roomIdentifier": 2, "adults": 1, "childrenAges": []},
    ]
    assert result.data["query"]["roomCount"] == 2
    assert [hotel["currency"] for hotel in result.data["hotels"]] == ["USD", "EUR"]


@pytest.mark.asyncio
async def test_search_hotels_without_dates_does_not_call_provider():
    providers = DummyProviders()

    result = await execute_tool_call(_call("search_hotels", {"destinationCode": "DXB"}), providers)

    assert result.ok is False
    assert "checkInDate" in result.error
    assert providers.requests == []


@pytest.mark.asyncio
async def test_collaborator_errors_become_safe_messages():
    technical = DummyProviders(errors={"search_hotels": GatewayError("Gateway returned status code 502", 502)})
    readable = DummyProviders(errors={"search_hotels": GatewayError("No availability for these dates")})

    technical_result = await execute_tool_call(_call("search_hotels"), technical, CONTEXT)
    readable_result = await execute_tool_call(_call("search_hotels"), readable, CONTEXT)

    assert technical_result.ok is False
    assert technical_result.error == "Hotel search failed."
    assert readable_result.error == "No availability for these dates"


@pytest.mark.asyncio
async def test_search_transfers_builds_ids_and_uses_context_party():
    providers = DummyProviders()

    result = await execute_tool_call(_call("search_transfers", {"transferType": "private"}), providers, CONTEXT)

    assert result.ok is True
    _, request = providers.requests[0]
    assert request["destinationName"] == "Dubai"
    assert request["transferType"] == "PRIVATE"
    assert request["paxCount"] == 3
    assert request["travelDate"] == "2025-03-01"
    assert [transfer["id"] for transfer in result.data["transfers"]] == ["tr-1", "PRIVATE-DXB-Sedan-2"]

    missing = await execute_tool_call(_call("search_transfers"), providers)
    assert missing.ok is False


@pytest.mark.asyncio
async def test_search_excursions_filters_locally():
    providers = DummyProviders()

    result = await execute_tool_call(
        _call("search_excursions", {"query": "Desert", "maxPrice": 100}),
        providers,
    )

    assert providers.requests == [("fetch_excursions", 60)]
    assert result.data["count"] == 1
    assert result.data["excursionFee"] == 5
    excursion = result.data["excursions"][0]
    assert excursion["id"] == "ex-1"
    assert excursion["pricing"] == {"adult": 60.0, "child": 45.0, "currency": "USD"}


@pytest.mark.asyncio
async def test_search_flights_requires_route_and_date():
    providers = DummyProviders()

    missing = await execute_tool_call(_call("search_flights", {"origin": "EVN"}), providers)
    result = await execute_tool_call(
        _call("search_flights", {"origin": "evn", "destination": "dxb", "departureDate": "2025-03-01", "adults": 20}),
        providers,
    )

    assert missing.ok is False
    assert result.ok is True
    _, request = providers.requests[0]
    assert (request["origin"], request["destination"], request["adults"]) == ("EVN", "DXB", 9)
    offer = result.data["offers"][0]
    assert offer["outbound"] == [{"origin": "EVN", "destination": "DXB"}]
    assert offer["inbound"] is None
    assert result.data["mock"] is False


@pytest.mark.asyncio
async def test_quote_insurance_uses_defaults_and_context():
    providers = DummyProviders()

    result = await execute_tool_call(_call("quote_insurance", {}), providers, CONTEXT)

    assert result.ok is True
    _, request = providers.requests[0]
    assert request["startDate"] == "2025-03-01"
    assert request["riskAmount"] == 15000.0
    assert request["riskCurrency"] == "EUR"
    assert len(request["travelers"]) == 4
    assert result.data["query"]["travelerCount"] == 4
    assert result.data["quote"]["totalPremium"] == 25
    assert result.data["quote"]["premiums"] == [{"travelerId": "adult-1", "premium": 12.5}]

    undated = await execute_tool_call(_call("quote_insurance", {}), providers)
    assert undated.ok is False
    assert "startDate" in undated.error


@pytest.mark.asyncio
async def test_unknown_tool_and_missing_providers_fail_softly():
    unknown = await execute_tool_call(_call("book_hotel"), DummyProviders())
    unconfigured = await execute_tool_call(_call("search_hotels"), None, CONTEXT)

    assert unknown.ok is False
    assert unknown.error == "Unknown tool: book_hotel"
    assert unconfigured.ok is False
    assert unconfigured.error == "This service is not available right now."


@pytest.mark.asyncio
async def test_dispatch_keeps_call_order_when_completion_order_differs():
    providers = DummyProviders(delays={"search_hotels": 0.05, "list_destinations": 0.01})
    calls = [
        _call("search_hotels", {}, call_id="c1"),
        _call("lookup_destinations", {}, call_id="c2"),
        _call("search_flights", {"origin": "EVN", "destination": "DXB", "departureDate": "2025-03-01"}, call_id="c3"),
    ]

    results = await dispatch_tool_calls(calls, providers, CONTEXT)

    assert [result.tool for result in results] == ["search_hotels", "lookup_destinations", "search_flights"]
    assert all(result.ok for result in results)
    assert await dispatch_tool_calls([], providers) == []


class BarrierProviders(DummyProviders):
    """Holds every answer until `expected` calls are in flight at once."""

    def __init__(self, expected: int) -> None:
        super().__init__()
        self.expected = expected
        self.started = 0
        self.all_started = asyncio.Event()

    async def _answer(self, method: str, request: Any, payload: Any) -> Any:
        self.started += 1
        if self.started >= self.expected:
            self.all_started.set()
        await self.all_started.wait()
        return await super()._answer(method, request, payload)


@pytest.mark.asyncio
async def test_dispatch_runs_calls_of_a_round_concurrently():
    providers = BarrierProviders(expected=3)
    calls = [
        _call("search_hotels", {}, call_id="c1"),
        _call("lookup_destinations", {}, call_id="c2"),
        _call("search_flights", {"origin": "EVN", "destination": "DXB", "departureDate": "2025-03-01"}, call_id="c3"),
    ]

    # One call at a time would never open the barrier.
    results = await asyncio.wait_for(dispatch_tool_calls(calls, providers, CONTEXT), timeout=2)

    assert providers.started == 3
    assert [result.ok for result in results] == [True, True, True]
    assert [result.tool for result in results] == ["search_hotels", "lookup_destinations", "search_flights"]
