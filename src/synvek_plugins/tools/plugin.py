# src/synvek_plugins/tools/plugin.py
"""
Base class for tool plugins.

    class MathFunctionTools(ToolPlugin):
        name = "MathFunctionTools"

        @tool("add", "add two numbers", [param("a", "number"), param("b", "number")])
        def add(self, a, b):
            return a + b

    plugin = MathFunctionTools()

Operations are looked up by their declared name; each name maps to exactly
the handler it decorates.
"""
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Type

from pydantic import BaseModel, ValidationError

from synvek_plugins.errors import ToolExecutionError, UnknownOperation
from synvek_plugins.tools.schema import (
    ParameterType,
    ToolParameterSchema,
    ToolSchema,
    ToolSchemaList,
    build_arguments_model,
)

logger = logging.getLogger(__name__)

SCHEMA_OPERATION = "schema"
OPERATION_KEY = "operation"


def param(
    name: str,
    type: ParameterType = "string",
    description: str = "",
    optional: bool = False,
    array: bool = False,
    children: Iterable[ToolParameterSchema] = (),
) -> ToolParameterSchema:
    return ToolParameterSchema(
        name=name,
        type=type,
        description=description,
        optional=optional,
        array=array,
        children=list(children),
    )


def tool(
    name: Optional[str] = None,
    description: str = "",
    parameters: Iterable[ToolParameterSchema] = (),
) -> Callable[[Callable], Callable]:
    """Declare a method as a tool operation."""

    def decorator(func: Callable) -> Callable:
        func.tool_schema = ToolSchema(
            name=name or func.__name__,
            description=description,
            parameters=list(parameters),
        )
        return func

    return decorator


class _Operation(NamedTuple):
    schema: ToolSchema
    handler: Callable[..., Any]
    arguments: Type[BaseModel]


class ToolPlugin:
    """Subclasses declare operations with @tool and are exposed as `plugin`."""

    name: str = ""
    description: str = ""

    def __init__(self):
        if not self.name:
            self.name = type(self).__name__
        self._operations: Dict[str, _Operation] = {}

        # Walk base classes first so declaration order is kept and overrides win.
        members: Dict[str, Any] = {}
        for klass in reversed(type(self).__mro__):
            members.update(vars(klass))

        for attr, member in members.items():
            schema = getattr(member, "tool_schema", None)
            if not isinstance(schema, ToolSchema):
                continue
            if schema.name == SCHEMA_OPERATION:
                raise ValueError(f"'{SCHEMA_OPERATION}' is reserved and cannot be a tool name")
            if schema.name in self._operations:
                raise ValueError(f"Duplicate tool name in {self.name}: {schema.name}")
            self._operations[schema.name] = _Operation(
                schema=schema,
                handler=getattr(self, attr),
                arguments=build_arguments_model(schema),
            )

    @property
    def tool_schemas(self) -> List[ToolSchema]:
        return [op.schema for op in self._operations.values()]

    @property
    def operations(self) -> List[str]:
        return list(self._operations)

    def schema_json(self) -> str:
        return ToolSchemaList(tool_schemas=self.tool_schemas).to_json()

    async def execute(self, data: Mapping[str, Any]) -> Any:
        """
        Run one operation.

        Raises:
            UnknownOperation: operation is not declared
            ToolExecutionError: arguments do not match the declared schema
        """
        operation = data.get(OPERATION_KEY)
        if operation == SCHEMA_OPERATION:
            return self.schema_json()

        op = self._operations.get(operation)
        if op is None:
            raise UnknownOperation(operation)

        arguments = {key: value for key, value in data.items() if key != OPERATION_KEY}
        try:
            validated = op.arguments.model_validate(arguments)
        except ValidationError as e:
            raise ToolExecutionError(f"Invalid arguments for {self.name}.{operation}: {e}") from e

        logger.debug(f"Function:{operation} is called now.")
        result = op.handler(**validated.model_dump())
        if inspect.isawaitable(result):
            result = await result
        return result
