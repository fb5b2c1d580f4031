# src/synvek_plugins/catalog/math_tools.py
"""Built-in tool plugin: basic arithmetic exposed to chat models."""

from synvek_plugins.tools import ToolPlugin, param, tool


class MathFunctionTools(ToolPlugin):
    name = "MathFunctionTools"
    description = "Math functions for chat models"

    @tool(
        "multiply",
        "multiply two numbers",
        [
            param("a", "number", "the first number to multiply"),
            param("b", "number", "the second number to multiply"),
        ],
    )
    def multiply(self, a, b):
        return a * b

    @tool(
        "add",
        "add two numbers",
        [
            param("a", "number", "the first number to add"),
            param("b", "number", "the second number to add"),
        ],
    )
    def add(self, a, b):
        return a + b


plugin = MathFunctionTools()
