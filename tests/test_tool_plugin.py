# tests/test_tool_plugin.py
"""
In-process tests for the tool plugin SDK: declaration, schema output,
argument validation and dispatch by declared name.
"""
import asyncio
import json

import pytest

from synvek_plugins.catalog.math_tools import MathFunctionTools
from synvek_plugins.errors import ToolExecutionError, UnknownOperation
from synvek_plugins.tools import ToolPlugin, ToolSchema, build_arguments_model, param, tool


def run(plugin, **data):
    return asyncio.run(plugin.execute(data))


class Geometry(ToolPlugin):
    name = "Geometry"

    @tool(
        "area",
        "area of a rectangle",
        [
            param(
                "rect",
                "object",
                "the rectangle",
                children=[param("width", "number"), param("height", "number")],
            ),
            param("label", "string", "optional label", optional=True),
        ],
    )
    def area(self, rect, label):
        value = rect["width"] * rect["height"]
        return f"{label}: {value}" if label else value

    @tool("total", "sum a list", [param("values", "number", "numbers to sum", array=True)])
    async def total(self, values):
        await asyncio.sleep(0)
        return sum(values)

    @tool("flags", "count true flags", [param("flags", "boolean", array=True, optional=True)])
    def count_flags(self, flags):
        return sum(1 for flag in flags or [] if flag)


class TestMathFunctionTools:
    """The built-in MathFunctionTools plugin."""

    def test_add(self):
        assert run(MathFunctionTools(), operation="add", a=2, b=5) == 7

    def test_multiply(self):
        assert run(MathFunctionTools(), operation="multiply", a=3, b=4) == 12
        assert run(MathFunctionTools(), operation="multiply", a=1.5, b=2) == 3.0

    def test_each_name_maps_to_its_own_handler(self):
        plugin = MathFunctionTools()
        assert plugin.operations == ["multiply", "add"]
        assert run(plugin, operation="add", a=3, b=4) != run(plugin, operation="multiply", a=3, b=4)

    def test_schema_operation(self):
        raw = run(MathFunctionTools(), operation="schema")
        document = json.loads(raw)
        assert [s["name"] for s in document["toolSchemas"]] == ["multiply", "add"]
        add = document["toolSchemas"][1]
        assert add["description"] == "add two numbers"
        assert add["schema"][0] == {
            "name": "a",
            "type": "number",
            "description": "the first number to add",
            "optional": False,
            "array": False,
            "children": [],
        }

    def test_unknown_operation(self):
        with pytest.raises(UnknownOperation) as exc_info:
            run(MathFunctionTools(), operation="divide", a=1, b=2)
        assert exc_info.value.operation == "divide"

    def test_missing_operation_key(self):
        with pytest.raises(UnknownOperation):
            run(MathFunctionTools(), a=1, b=2)

    @pytest.mark.parametrize("arguments", [
        {"a": 1},
        {"a": "1", "b": 2},
        {"a": True, "b": 2},
        {"a": None, "b": 2},
    ])
    def test_invalid_arguments(self, arguments):
        with pytest.raises(ToolExecutionError, match="Invalid arguments for MathFunctionTools.add"):
            run(MathFunctionTools(), operation="add", **arguments)


class TestDeclaration:
    """@tool / param and ToolPlugin construction."""

    def test_name_defaults_to_class_name(self):
        class Unnamed(ToolPlugin):
            pass

        assert Unnamed().name == "Unnamed"
        assert Unnamed().tool_schemas == []

    def test_schema_is_reserved(self):
        class Reserved(ToolPlugin):
            @tool("schema")
            def schema(self):
                return None

        with pytest.raises(ValueError, match="reserved"):
            Reserved()

    def test_duplicate_names_are_rejected(self):
        class Twice(ToolPlugin):
            @tool("op")
            def first(self):
                return 1

            @tool("op")
            def second(self):
                return 2

        with pytest.raises(ValueError, match="Duplicate tool name"):
            Twice()

    def test_subclass_override_keeps_one_operation(self):
        class Louder(MathFunctionTools):
            @tool("add", "add and double", [param("a", "number"), param("b", "number")])
            def add(self, a, b):
                return 2 * (a + b)

        plugin = Louder()
        assert plugin.operations == ["multiply", "add"]
        assert run(plugin, operation="add", a=1, b=2) == 6

    def test_tool_name_defaults_to_function_name(self):
        @tool(description="no name given")
        def ping():
            return "pong"

        assert ping.tool_schema.name == "ping"


class TestArguments:
    """Objects, arrays and optionals."""

    def test_object_parameter(self):
        assert run(Geometry(), operation="area", rect={"width": 2, "height": 3}) == 6
        assert run(Geometry(), operation="area", rect={"width": 2, "height": 3}, label="r") == "r: 6"

    def test_object_children_are_validated(self):
        with pytest.raises(ToolExecutionError):
            run(Geometry(), operation="area", rect={"width": 2})

    def test_array_parameter_and_async_handler(self):
        assert run(Geometry(), operation="total", values=[1, 2, 3.5]) == 6.5
        with pytest.raises(ToolExecutionError):
            run(Geometry(), operation="total", values=3)

    def test_optional_array(self):
        assert run(Geometry(), operation="flags") == 0
        assert run(Geometry(), operation="flags", flags=[True, False, True]) == 2

    def test_build_arguments_model(self):
        schema = ToolSchema.model_validate({
            "name": "greet",
            "schema": [
                {"name": "who", "type": "string"},
                {"name": "times", "type": "number", "optional": True},
            ],
        })
        model = build_arguments_model(schema)
        assert model.model_validate({"who": "ada"}).model_dump() == {"who": "ada", "times": None}
