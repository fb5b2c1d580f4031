# src/synvek_plugins/tools/schema.py
"""
Tool schema documents and argument validation.

A tool plugin describes each operation as a ToolSchema. The same document
is what `execute({"operation": "schema"})` returns and what the host uses to
validate arguments before a handler runs:

    number  -> int | float
    string  -> str
    boolean -> bool
    object  -> nested model built from `children`
    array   -> list of the above
    optional-> may be omitted (None)
"""
from typing import Any, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, create_model

ParameterType = Literal["number", "string", "boolean", "object"]

_PRIMITIVES = {
    "number": Union[StrictInt, StrictFloat],
    "string": StrictStr,
    "boolean": StrictBool,
}


class ToolParameterSchema(BaseModel):
    name: str
    type: ParameterType
    description: str = ""
    optional: bool = False
    array: bool = False
    children: List["ToolParameterSchema"] = Field(default_factory=list)


class ToolSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    parameters: List[ToolParameterSchema] = Field(default_factory=list, alias="schema")


class ToolSchemaList(BaseModel):
    """Body of the JSON string returned by the `schema` operation."""

    model_config = ConfigDict(populate_by_name=True)

    tool_schemas: List[ToolSchema] = Field(default_factory=list, alias="toolSchemas")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def _annotation(parameter: ToolParameterSchema, owner: str) -> Any:
    if parameter.type == "object":
        annotation: Any = _object_model(f"{owner}_{parameter.name}", parameter.children)
    else:
        annotation = _PRIMITIVES[parameter.type]
    if parameter.array:
        annotation = List[annotation]
    return annotation


def _field(parameter: ToolParameterSchema, owner: str):
    annotation = _annotation(parameter, owner)
    if parameter.optional:
        return (Optional[annotation], Field(default=None, description=parameter.description))
    return (annotation, Field(..., description=parameter.description))


def _object_model(model_name: str, parameters: List[ToolParameterSchema]) -> Type[BaseModel]:
    fields = {p.name: _field(p, model_name) for p in parameters}
    return create_model(model_name, **fields)


def build_arguments_model(tool_schema: ToolSchema) -> Type[BaseModel]:
    """pydantic model that validates the keyword arguments of one operation."""
    return _object_model(f"{tool_schema.name}_arguments", tool_schema.parameters)
