"""
Tool registry: expose host functions as schema-described tools for the remote agent.

Functions are marked with @tool("description"); parameter descriptions come from
Annotated[type, "description"]. register(instance) collects every marked member of
an instance (or module), derives its parameter schema once from the signature, and
stores it under a sanitized name. execute(name, args_json) dispatches by name with
JSON-encoded arguments and always returns a string: the remote agent sees errors as
text and can react to them, so nothing raised by a tool crosses this boundary.
"""

import collections.abc
import inspect
import json
import logging
import re
import types
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, Callable, Union, get_args, get_origin, get_type_hints

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from docqa.core.cancellation import CancellationToken
from docqa.core.errors import ArgumentMissingError, UnknownToolError

logger = logging.getLogger(__name__)

TOOL_MARKER = "__docqa_tool__"

# Output for an async tool that finishes without a value.
ASYNC_DONE_MESSAGE = "Task completed successfully"

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")

_ARRAY_ORIGINS = (
    list,
    tuple,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.Iterable,
    collections.abc.Collection,
    collections.abc.Set,
)


def sanitize_tool_name(name: str) -> str:
    """Map any callable name to ^[a-z0-9_-]+$ (lambdas and local functions included)."""
    sanitized = _INVALID_CHARS.sub("_", name or "")
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized).strip("_-")
    return sanitized.lower() if sanitized else "tool"


def tool(description: str | None = None, *, name: str | None = None) -> Callable:
    """Mark a function or method as a tool. The description is what the agent reads."""

    def decorator(func: Callable) -> Callable:
        setattr(func, TOOL_MARKER, {"description": description, "name": name})
        return func

    return decorator


@dataclass
class ToolParameter:
    name: str
    type: str
    description: str
    required: bool
    default: Any = None
    annotation: Any = inspect.Parameter.empty


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def to_schema(self) -> dict[str, Any]:
        """JSON schema for the parameters. 'required' is omitted when no parameter is required."""
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {
                p.name: {"type": p.type, "description": p.description} for p in self.parameters
            },
        }
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return schema

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_schema(),
            },
        }


@dataclass
class ToolResult:
    """Uniform result envelope: {"ok": value} or {"error": message}."""

    ok: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_output(self) -> str:
        """Text submitted to the remote agent as the tool output."""
        if self.error is not None:
            return self.error
        return serialize_result(self.ok)

    def to_json(self) -> str:
        if self.error is not None:
            return json.dumps({"error": self.error}, separators=(",", ":"), ensure_ascii=False)
        return json.dumps({"ok": _jsonable(self.ok)}, separators=(",", ":"), ensure_ascii=False)


@dataclass
class _Binding:
    definition: ToolDefinition
    func: Callable
    owner: Any
    cancellation_params: list[str] = field(default_factory=list)


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, by_alias=True)


def serialize_result(value: Any) -> str:
    """Strings pass through verbatim, None becomes 'null', anything else compact JSON."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    try:
        return json.dumps(_jsonable(value), separators=(",", ":"), ensure_ascii=False)
    except (PydanticSerializationError, TypeError, ValueError):
        return str(value)


def _strip_annotated(annotation: Any) -> tuple[Any, str | None]:
    """Return (base annotation, description from Annotated metadata if any)."""
    if get_origin(annotation) is Annotated:
        base, *extras = get_args(annotation)
        description = next((x for x in extras if isinstance(x, str)), None)
        return base, description
    return annotation, None


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1 and len(get_args(annotation)) == 2:
            return args[0], True
    return annotation, False


def json_type_for(annotation: Any) -> str:
    """Map a Python annotation to a coarse JSON schema type tag."""
    annotation, _ = _strip_annotated(annotation)
    annotation, _ = _unwrap_optional(annotation)
    if annotation is bool:
        return "boolean"
    if annotation is int:
        return "integer"
    if annotation in (float, Decimal):
        return "number"
    if annotation in (list, tuple, set, frozenset):
        return "array"
    if get_origin(annotation) in _ARRAY_ORIGINS:
        return "array"
    return "string"


def _is_cancellation(annotation: Any) -> bool:
    annotation, _ = _strip_annotated(annotation)
    annotation, _ = _unwrap_optional(annotation)
    return annotation is CancellationToken


def _resolve_hints(func: Callable) -> dict[str, Any]:
    try:
        return get_type_hints(func, include_extras=True)
    except (NameError, TypeError):
        return dict(getattr(func, "__annotations__", {}) or {})


def _describe(func: Callable, fallback_name: str) -> str:
    marker = getattr(func, TOOL_MARKER, None) or {}
    if marker.get("description"):
        return marker["description"]
    doc = inspect.getdoc(func)
    if doc:
        return doc.splitlines()[0].strip()
    return f"Executes {fallback_name}"


def _build_binding(name: str, func: Callable, owner: Any) -> _Binding:
    hints = _resolve_hints(func)
    parameters: list[ToolParameter] = []
    cancellation_params: list[str] = []
    for param in inspect.signature(func).parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, param.annotation)
        if _is_cancellation(annotation):
            cancellation_params.append(param.name)
            continue
        base, description = _strip_annotated(annotation)
        has_default = param.default is not inspect.Parameter.empty
        parameters.append(
            ToolParameter(
                name=param.name,
                type=json_type_for(base),
                description=description or param.name,
                required=not has_default,
                default=param.default if has_default else None,
                annotation=base,
            )
        )
    definition = ToolDefinition(name=name, description=_describe(func, func.__name__), parameters=parameters)
    return _Binding(definition=definition, func=func, owner=owner, cancellation_params=cancellation_params)


def _coerce(value: Any, param: ToolParameter) -> Any:
    """Convert a decoded JSON value to the parameter's declared type."""
    annotation, optional = _unwrap_optional(param.annotation)
    if value is None and optional:
        return None
    if annotation is inspect.Parameter.empty or annotation is Any:
        return value
    if annotation is str:
        return value if isinstance(value, str) else json.dumps(value)
    if annotation is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise TypeError(f"parameter {param.name!r} expects a boolean, got {value!r}")
    if annotation is int:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise TypeError(f"parameter {param.name!r} expects an integer, got {value!r}")
        return int(value)
    if annotation is float:
        if isinstance(value, bool):
            raise TypeError(f"parameter {param.name!r} expects a number, got {value!r}")
        return float(value)
    if annotation is Decimal:
        return Decimal(str(value))
    try:
        return TypeAdapter(annotation).validate_python(value)
    except (ValidationError, TypeError, ValueError):
        # Structured decode failed: hand the function the raw JSON text instead.
        logger.info("[tools:coerce] fallback to raw string for parameter=%s", param.name)
        return value if isinstance(value, str) else json.dumps(value)


class ToolRegistry:
    """Name-addressable, schema-described, JSON-dispatchable tools."""

    def __init__(self) -> None:
        self._tools: dict[str, _Binding] = {}

    def __contains__(self, name: str) -> bool:
        return sanitize_tool_name(name) in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def register(self, owner: Any) -> list[str]:
        """
        Register every @tool-marked member of an instance or module.
        Returns the sanitized names registered, in discovery order.
        """
        registered: list[str] = []
        if inspect.ismodule(owner):
            for attr_name, member in inspect.getmembers(owner, inspect.isfunction):
                marker = getattr(member, TOOL_MARKER, None)
                if marker is not None:
                    registered.append(self._store(marker.get("name") or attr_name, member, None))
            return registered

        for attr_name in dir(type(owner)):
            static = inspect.getattr_static(type(owner), attr_name, None)
            raw = static.__func__ if isinstance(static, (staticmethod, classmethod)) else static
            marker = getattr(raw, TOOL_MARKER, None)
            if marker is None:
                continue
            bound = getattr(owner, attr_name)
            bound_owner = None if isinstance(static, staticmethod) else owner
            registered.append(self._store(marker.get("name") or attr_name, bound, bound_owner))
        return registered

    def register_function(self, func: Callable, name: str | None = None) -> str:
        """Register a single callable (function, bound method or lambda)."""
        marker = getattr(func, TOOL_MARKER, None) or {}
        owner = getattr(func, "__self__", None)
        return self._store(name or marker.get("name") or func.__name__, func, owner)

    def _store(self, raw_name: str, func: Callable, owner: Any) -> str:
        name = sanitize_tool_name(raw_name)
        binding = _build_binding(name, func, owner)
        if name in self._tools:
            logger.warning(
                "[tools:register] overwriting tool=%s previous=%s",
                name,
                getattr(self._tools[name].func, "__qualname__", self._tools[name].func),
            )
        self._tools[name] = binding
        logger.info(
            "[tools:register] tool=%s -> %s params=%s",
            name,
            getattr(func, "__qualname__", repr(func)),
            [p.name for p in binding.definition.parameters],
        )
        return name

    def build_definition(self, name: str) -> ToolDefinition:
        sanitized = sanitize_tool_name(name)
        binding = self._tools.get(sanitized)
        if binding is None:
            raise UnknownToolError(name, sanitized)
        return binding.definition

    def definitions(self) -> list[ToolDefinition]:
        return [b.definition for b in self._tools.values()]

    def openai_tools(self) -> list[dict[str, Any]]:
        return [d.to_openai_tool() for d in self.definitions()]

    async def execute(
        self, name: str, args_json: str | None, cancellation: CancellationToken | None = None
    ) -> str:
        """Execute a tool call and return the text to submit as its output. Never raises."""
        result = await self.execute_result(name, args_json, cancellation)
        return result.to_output()

    async def execute_result(
        self, name: str, args_json: str | None, cancellation: CancellationToken | None = None
    ) -> ToolResult:
        sanitized = sanitize_tool_name(name)
        binding = self._tools.get(sanitized)
        if binding is None:
            err = UnknownToolError(name, sanitized)
            logger.warning("[tools:execute] %s", err)
            return ToolResult(error=str(err))

        logger.info("[tools:execute] IN  tool=%s arguments=%r", sanitized, args_json)
        try:
            kwargs = self._bind_arguments(binding, args_json)
            for param_name in binding.cancellation_params:
                kwargs[param_name] = cancellation or CancellationToken.none()
            value = binding.func(**kwargs)
            if inspect.isawaitable(value):
                value = await value
                if value is None:
                    value = ASYNC_DONE_MESSAGE
        except Exception as e:
            logger.warning("[tools:execute] tool=%s failed: %s", sanitized, e)
            return ToolResult(error=f"Error executing {name}: {e}")
        logger.info("[tools:execute] OUT tool=%s result_type=%s", sanitized, type(value).__name__)
        return ToolResult(ok=value)

    @staticmethod
    def _bind_arguments(binding: _Binding, args_json: str | None) -> dict[str, Any]:
        if args_json is None or not args_json.strip():
            # No arguments at all: every parameter takes its default, None when it has none.
            return {p.name: p.default for p in binding.definition.parameters}

        payload = json.loads(args_json)
        if not isinstance(payload, dict):
            raise ValueError(f"arguments must be a JSON object, got {type(payload).__name__}")

        kwargs: dict[str, Any] = {}
        for param in binding.definition.parameters:
            if param.name in payload:
                kwargs[param.name] = _coerce(payload[param.name], param)
            elif not param.required:
                kwargs[param.name] = param.default
            else:
                raise ArgumentMissingError(param.name)
        return kwargs

