"""
JSON-schema definitions of the six data-retrieval tools exposed to the model.

The definitions are plain dicts so they can be logged, snapshot-tested and
handed to any backend. ``to_function_declarations`` converts them into the
google-genai types that ADK model backends expect.
"""

from typing import Any, Dict, List

from google.genai import types as genai_types


_DATE = {"type": "string", "description": "YYYY-MM-DD"}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "lookup_destinations",
        "description": "Find destination codes by name/country before a hotel search.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "countryCode": {"type": "string", "description": "ISO-2 country code, for example AE."},
                "limit": {"type": "integer", "minimum": 1, "maximum": 30},
            },
            "additionalProperties": False,
        },
    },
    {
        "name": "search_hotels",
        "description": (
            "Search real hotel inventory with dates/occupancy. "
            "Use this before proposing concrete hotel options."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "destinationCode": {"type": "string"},
                "hotelCode": {"type": "string"},
                "checkInDate": dict(_DATE),
                "checkOutDate": dict(_DATE),
                "roomCount": {"type": "integer", "minimum": 1, "maximum": 4},
                "adults": {"type": "integer", "minimum": 1, "maximum": 12},
                "children": {"type": "integer", "minimum": 0, "maximum": 8},
                "countryCode": {"type": "string"},
                "nationality": {"type": "string"},
                "currency": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
    {
        "name": "search_transfers",
        "description": "Find transfer options by destination name/code and passenger count.",
        "parameters": {
            "type": "object",
            "properties": {
                "destinationLocationCode": {"type": "string"},
                "destinationName": {"type": "string"},
                "transferType": {"type": "string", "enum": ["INDIVIDUAL", "GROUP"]},
                "paxCount": {"type": "integer", "minimum": 1, "maximum": 20},
                "travelDate": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
    {
        "name": "search_excursions",
        "description": "Load excursion options and optionally filter by keyword or max price.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 30},
                "maxPrice": {"type": "number"},
            },
            "additionalProperties": False,
        },
    },
    {
        "name": "search_flights",
        "description": "Search flight offers by origin/destination/date.",
        "parameters": {
            "type": "object",
            "properties": {
                "origin": {"type": "string"},
                "destination": {"type": "string"},
                "departureDate": dict(_DATE),
                "returnDate": dict(_DATE),
                "cabinClass": {"type": "string"},
                "adults": {"type": "integer", "minimum": 1, "maximum": 9},
                "children": {"type": "integer", "minimum": 0, "maximum": 6},
                "currency": {"type": "string"},
            },
            "required": ["origin", "destination", "departureDate"],
            "additionalProperties": False,
        },
    },
    {
        "name": "quote_insurance",
        "description": "Calculate a live travel insurance premium for travelers. Use when proposing insurance price.",
        "parameters": {
            "type": "object",
            "properties": {
                "startDate": dict(_DATE),
                "endDate": dict(_DATE),
                "days": {"type": "integer", "minimum": 1, "maximum": 365},
                "territoryCode": {"type": "string"},
                "riskAmount": {"type": "number"},
                "riskCurrency": {"type": "string"},
                "riskLabel": {"type": "string"},
                "promoCode": {"type": "string"},
                "subrisks": {"type": "array", "items": {"type": "string"}},
                "travelers": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "age": {"type": "integer"},
                            "passportNumber": {"type": "string"},
                            "socialCard": {"type": "string"},
                            "subrisks": {"type": "array", "items": {"type": "string"}},
                        },
                        "required": ["age"],
                        "additionalProperties": False,
                    },
                },
            },
            "additionalProperties": False,
        },
    },
]


def tool_names() -> List[str]:
    return [definition["name"] for definition in TOOL_DEFINITIONS]


def _to_schema(schema: Dict[str, Any]) -> genai_types.Schema:
    """Translate a JSON-schema fragment into a google-genai Schema."""
    kwargs: Dict[str, Any] = {"type": schema.get("type", "string").upper()}
    if "description" in schema:
        kwargs["description"] = schema["description"]
    if "enum" in schema:
        kwargs["enum"] = list(schema["enum"])
    if "minimum" in schema:
        kwargs["minimum"] = schema["minimum"]
    if "maximum" in schema:
        kwargs["maximum"] = schema["maximum"]
    if "required" in schema:
        kwargs["required"] = list(schema["required"])
    if "properties" in schema:
        kwargs["properties"] = {name: _to_schema(value) for name, value in schema["properties"].items()}
    if "items" in schema:
        kwargs["items"] = _to_schema(schema["items"])
    # additionalProperties has no counterpart in the genai Schema type.
    return genai_types.Schema(**kwargs)


def to_function_declarations() -> List[genai_types.FunctionDeclaration]:
    return [
        genai_types.FunctionDeclaration(
            name=definition["name"],
            description=definition["description"],
            parameters=_to_schema(definition["parameters"]),
        )
        for definition in TOOL_DEFINITIONS
    ]
