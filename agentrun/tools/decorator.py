"""
@tool decorator - build a ToolDefinition and handle from a typed async function.

Inspects the function signature and type hints to build the JSON schema
of the arguments object, and wraps the function in a handle the
registry and executor understand.

Usage::

    from typing import Annotated
    from agentrun.tools.decorator import tool

    @tool
    async def read_file(path: Annotated[str, "Path relative to the workspace"]) -> str:
        \"\"\"Read a UTF-8 text file.\"\"\"
        ...

    @tool(category="mail", timeout_ms=30_000)
    async def send_mail(to: str, body: str, conversation_id: str = "") -> str:
        \"\"\"Send an email.\"\"\"
        ...

    registry.register("files", "core", [read_file.registration()])

A parameter named ``conversation_id`` is filled from the caller's
conversation and is not shown to the model.
"""

import inspect
from typing import (
    Annotated,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from .models import CONVERSATION_ID_ARG, CORE_CATEGORY, ToolDefinition, ToolResult

_NoneType = type(None)
_INJECTED = "conversation_id"


def _is_optional(annotation: Any) -> bool:
    if get_origin(annotation) is Union:
        return _NoneType in get_args(annotation)
    return False


def _extract_base_type(annotation: Any) -> Any:
    """Unwrap ``Annotated[T, ...]`` to get ``T``."""
    if get_origin(annotation) is Annotated:
        return get_args(annotation)[0]
    return annotation


def _extract_annotated_description(annotation: Any) -> Optional[str]:
    if get_origin(annotation) is not Annotated:
        return None
    for arg in get_args(annotation)[1:]:
        if isinstance(arg, str):
            return arg
    return None


def _python_type_to_json_schema(annotation: Any) -> Dict[str, Any]:
    """Map a Python type annotation to a JSON schema dict."""
    base = _extract_base_type(annotation)

    if get_origin(base) is Union:
        args = [a for a in get_args(base) if a is not _NoneType]
        if len(args) == 1:
            return _python_type_to_json_schema(args[0])

    if base is str:
        return {"type": "string"}
    if base is bool:
        return {"type": "boolean"}
    if base is int:
        return {"type": "integer"}
    if base is float:
        return {"type": "number"}

    origin = get_origin(base)
    if base is list or origin is list:
        schema: Dict[str, Any] = {"type": "array"}
        args = get_args(base)
        if args:
            schema["items"] = _python_type_to_json_schema(args[0])
        return schema
    if base is dict or origin is dict:
        return {"type": "object"}

    return {"type": "string"}


def _visible_parameters(func: Callable) -> List[inspect.Parameter]:
    params = []
    for name, param in inspect.signature(func).parameters.items():
        if name == _INJECTED:
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        params.append(param)
    return params


def _build_json_schema(func: Callable) -> Dict[str, Any]:
    hints = get_type_hints(func, include_extras=True)

    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param in _visible_parameters(func):
        annotation = hints.get(param.name, str)
        prop_schema = _python_type_to_json_schema(annotation)
        desc = _extract_annotated_description(annotation)
        if desc:
            prop_schema["description"] = desc
        properties[param.name] = prop_schema

        has_default = param.default is not inspect.Parameter.empty
        if not has_default and not _is_optional(_extract_base_type(annotation)):
            required.append(param.name)

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class FunctionTool:
    """Tool handle wrapping a single async function."""

    def __init__(self, func: Callable, definition: ToolDefinition):
        self.func = func
        self.definition = definition
        self._accepts_conversation_id = _INJECTED in inspect.signature(func).parameters
        self._names = [p.name for p in _visible_parameters(func)]

    @property
    def name(self) -> str:
        return self.definition.name

    def registration(self) -> Tuple[ToolDefinition, "FunctionTool"]:
        return self.definition, self

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> Union[ToolResult, str]:
        kwargs = {key: arguments[key] for key in self._names if key in arguments}
        if self._accepts_conversation_id:
            kwargs[_INJECTED] = arguments.get(CONVERSATION_ID_ARG, "")
        return await self.func(**kwargs)

    async def __call__(self, *args, **kwargs):
        return await self.func(*args, **kwargs)


def tool(
    func: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    category: str = CORE_CATEGORY,
    timeout_ms: int = 0,
) -> Any:
    """Turn a typed async function into a :class:`FunctionTool`.

    Supports both bare ``@tool`` and parameterised ``@tool(category="mail")``.
    """

    def _make_tool(fn: Callable) -> FunctionTool:
        doc = inspect.getdoc(fn) or ""
        definition = ToolDefinition(
            name=name or fn.__name__,
            description=description or (doc.split("\n")[0].strip() if doc else fn.__name__),
            parameters=_build_json_schema(fn),
            category=category,
            timeout_ms=timeout_ms,
        )
        return FunctionTool(fn, definition)

    if func is not None:
        return _make_tool(func)
    return _make_tool
