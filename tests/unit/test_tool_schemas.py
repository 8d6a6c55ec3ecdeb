from google.genai import types as genai_types

from concierge.tools.tool_schemas import TOOL_DEFINITIONS, to_function_declarations, tool_names


def test_six_tools_are_exposed():
    assert tool_names() == [
        "lookup_destinations",
        "search_hotels",
        "search_transfers",
        "search_excursions",
        "search_flights",
        "quote_insurance",
    ]
    for definition in TOOL_DEFINITIONS:
        assert definition["parameters"]["type"] == "object"
        assert definition["parameters"]["additionalProperties"] is False


def test_function_declarations_carry_required_fields_and_bounds():
    declarations = {declaration.name: declaration for declaration in to_function_declarations()}

    flights = declarations["search_flights"].parameters
    assert flights.type == genai_types.Type.OBJECT
    assert set(flights.required) == {"origin", "destination", "departureDate"}

    limit = declarations["lookup_destinations"].parameters.properties["limit"]
    assert limit.type == genai_types.Type.INTEGER
    assert (limit.minimum, limit.maximum) == (1, 30)

    travelers = declarations["quote_insurance"].parameters.properties["travelers"]
    assert travelers.type == genai_types.Type.ARRAY
    assert travelers.items.required == ["age"]
