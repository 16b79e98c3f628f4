"""Expose host-side methods to the model as tools.

Tools are ordinary methods on plain objects. A method becomes a tool either by
carrying the :func:`tool` decorator or by being named in a declarative table
passed to :meth:`ToolRegistry.register`:

    class BuildTools:
        @tool("Run the test suite", resource="shell-exec")
        def run_tests(self, module: str, verbose: bool = False) -> str:
            ...

    registry = ToolRegistry(interceptor=GovernanceInterceptor(config.governance))
    registry.register(BuildTools())
    registry.invoke("run_tests", {"module": "core", "verbose": "true"})

Parameter types come from annotations (``str``, ``int``, ``float``, ``bool``;
``Optional[X]`` unwraps to ``X``; anything else is advertised as a string).
Parameters without defaults are required.
"""

from __future__ import annotations

import inspect
import json as _json
import logging
import types
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Union, get_args, get_origin, get_type_hints

from utagent.errors import GovernanceDenied, ToolExecutionError
from utagent.messages import ParameterSchema, PropertySchema, ToolCall, ToolDescriptor

logger = logging.getLogger(__name__)

# Python type -> JSON Schema type
_TYPE_MAP: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}

NO_RETURN_VALUE = "Success (no return value)"

Invoker = Callable[[Mapping[str, Any]], Any]


@dataclass(frozen=True)
class ToolSpec:
    """Declarative tool metadata, used instead of (or to override) the decorator."""

    description: str
    params: Mapping[str, str] = field(default_factory=dict)
    resource: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class RegisteredTool:
    descriptor: ToolDescriptor
    invoker: Invoker
    resource: Optional[str] = None
    returns_text: bool = True
    param_types: Mapping[str, type] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.descriptor.name


Interceptor = Callable[[RegisteredTool, Invoker], Invoker]


def tool(
    description: str,
    *,
    name: str | None = None,
    params: Mapping[str, str] | None = None,
    resource: str | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a method as a tool.

    Args:
        description: What the tool does, shown to the model.
        name: Tool name; defaults to the method name.
        params: Per-parameter descriptions; missing entries use the parameter name.
        resource: Governance resource key (e.g. ``file-write``) checked before dispatch.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        fn.__tool_description__ = description  # type: ignore[attr-defined]
        fn.__tool_name__ = name  # type: ignore[attr-defined]
        fn.__tool_params__ = dict(params or {})  # type: ignore[attr-defined]
        fn.__tool_resource__ = resource  # type: ignore[attr-defined]
        return fn

    return decorator


def _unwrap_optional(tp: Any) -> Any:
    """Optional[X] and X | None -> X; other types unchanged."""
    if get_origin(tp) in (Union, types.UnionType):
        non_none = [a for a in get_args(tp) if a is not type(None)]
        if len(non_none) == 1:
            return non_none[0]
    return tp


def _type_hints(fn: Callable[..., Any]) -> dict[str, Any]:
    try:
        return get_type_hints(fn)
    except Exception:
        return dict(getattr(fn, "__annotations__", {}))


def _returns_text(fn: Callable[..., Any], hints: Mapping[str, Any]) -> bool:
    if "return" not in hints:
        return True
    ret = _unwrap_optional(hints["return"])
    return ret is str or ret == "str"


def _coerce(value: Any, tp: type | None) -> Any:
    """Convert a JSON argument to the parameter type. Booleans are true only for 'true'."""
    if tp is None:
        return value
    if tp is bool:
        return str(value).strip().lower() == "true"
    if tp is int:
        if isinstance(value, str):
            return int(value.strip())
        return int(value)
    if tp is float:
        if isinstance(value, str):
            return float(value.strip())
        return float(value)
    if tp is str:
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return _json.dumps(value)
        return str(value)
    return value


def serialize_result(result: Any) -> str:
    """Turn a tool's return value into the text sent back to the model."""
    if result is None:
        return NO_RETURN_VALUE
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list, tuple)):
        return _json.dumps(result, default=str)
    return str(result)


def _error_message(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


class ToolRegistry:
    """Name-indexed table of tools, built once and read-only afterwards."""

    def __init__(self, interceptor: Interceptor | None = None) -> None:
        self._interceptor = interceptor
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, obj: Any, table: Mapping[str, ToolSpec] | None = None) -> list[str]:
        """Register every tool-exposed public method of ``obj``.

        ``obj`` may also be a single decorated function. Returns the names
        registered, in declaration order.
        """
        if inspect.isroutine(obj):
            candidates = [(obj.__name__, obj)]
        else:
            candidates = [
                (attr, getattr(obj, attr))
                for attr in _public_method_names(obj)
            ]
        table = dict(table or {})
        registered: list[str] = []
        for attr, fn in candidates:
            spec = table.pop(attr, None)
            if spec is None and getattr(fn, "__tool_description__", None) is None:
                continue
            entry = self._build(fn, attr, spec)
            if entry.name in self._tools:
                raise ValueError(f"Duplicate tool name {entry.name!r}")
            self._tools[entry.name] = entry
            registered.append(entry.name)
            logger.debug("TOOL_REGISTERED name=%s resource=%s", entry.name, entry.resource)
        if table:
            raise ValueError(f"Tool table names unknown methods: {', '.join(sorted(table))}")
        return registered

    def register_all(self, *objs: Any) -> list[str]:
        """Register several objects in order; returns every name registered."""
        names: list[str] = []
        for obj in objs:
            names.extend(self.register(obj))
        return names

    def _build(self, fn: Callable[..., Any], attr: str, spec: ToolSpec | None) -> RegisteredTool:
        """Derive the descriptor from the signature and wrap the invoker with the interceptor."""
        hints = _type_hints(fn)
        sig = inspect.signature(fn)
        param_docs: Mapping[str, str] = getattr(fn, "__tool_params__", None) or {}
        description = getattr(fn, "__tool_description__", None) or ""
        resource = getattr(fn, "__tool_resource__", None)
        name = getattr(fn, "__tool_name__", None) or attr
        if spec is not None:
            description = spec.description
            param_docs = {**param_docs, **spec.params}
            resource = spec.resource if spec.resource is not None else resource
            name = spec.name or name

        properties: dict[str, PropertySchema] = {}
        param_types: dict[str, type] = {}
        required: list[str] = []
        for pname, param in sig.parameters.items():
            if pname in ("self", "cls") or param.kind in (
                inspect.Parameter.VAR_POSITIONAL,
                inspect.Parameter.VAR_KEYWORD,
            ):
                continue
            tp = _unwrap_optional(hints.get(pname, str))
            json_type = _TYPE_MAP.get(tp, "string") if isinstance(tp, type) else "string"
            if isinstance(tp, type) and tp in _TYPE_MAP:
                param_types[pname] = tp
            properties[pname] = PropertySchema(type=json_type, description=param_docs.get(pname) or pname)
            if param.default is inspect.Parameter.empty:
                required.append(pname)

        descriptor = ToolDescriptor(
            name=name,
            description=description,
            parameters=ParameterSchema(properties=properties, required=tuple(required)),
        )

        def call(arguments: Mapping[str, Any]) -> Any:
            return fn(**arguments)

        entry = RegisteredTool(
            descriptor=descriptor,
            invoker=call,
            resource=resource,
            returns_text=_returns_text(fn, hints),
            param_types=param_types,
        )
        if self._interceptor is not None:
            entry = RegisteredTool(
                descriptor=descriptor,
                invoker=self._interceptor(entry, call),
                resource=resource,
                returns_text=entry.returns_text,
                param_types=param_types,
            )
        return entry

    # -- lookup --------------------------------------------------------

    def descriptors(self) -> tuple[ToolDescriptor, ...]:
        """Descriptors of all tools, in registration order."""
        return tuple(t.descriptor for t in self._tools.values())

    def names(self) -> list[str]:
        """Registered tool names, in registration order."""
        return list(self._tools)

    def get(self, name: str) -> RegisteredTool | None:
        """Look up a tool by name; ``None`` if it is not registered."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[RegisteredTool]:
        return iter(self._tools.values())

    # -- dispatch ------------------------------------------------------

    def invoke_call(self, call: ToolCall) -> str:
        """Dispatch a model-issued :class:`ToolCall`; see :meth:`invoke`."""
        return self.invoke(call.name, call.arguments)

    def invoke(self, name: str, arguments: Mapping[str, Any] | None = None) -> str:
        """Dispatch one call and return its textual outcome.

        Unknown tools and failures of text-returning tools come back as
        ``"Error: ..."`` text. Failures of other tools raise
        ToolExecutionError. GovernanceDenied always propagates.
        """
        entry = self._tools.get(name)
        if entry is None:
            logger.warning("TOOL_UNKNOWN tool=%s", name)
            return f"Error: Unknown tool: {name}"

        arguments = arguments or {}
        try:
            kwargs = self._prepare_arguments(entry, arguments)
        except (TypeError, ValueError) as exc:
            # arguments rejected before the interceptor chain runs
            logger.info("TOOL_CALL tool=%s args=%s", name, dict(arguments))
            logger.error("TOOL_ERROR tool=%s %s: %s", name, type(exc).__name__, exc)
            if entry.returns_text:
                return f"Error: {_error_message(exc)}"
            raise ToolExecutionError(name, _error_message(exc), original=exc) from exc

        try:
            result = entry.invoker(kwargs)
        except GovernanceDenied:
            raise
        except ToolExecutionError:
            raise
        except Exception as exc:
            logger.warning("TOOL_FAILED tool=%s %s: %s", name, type(exc).__name__, exc)
            if entry.returns_text:
                return f"Error: {_error_message(exc)}"
            raise ToolExecutionError(name, _error_message(exc), original=exc) from exc
        return serialize_result(result)

    def _prepare_arguments(self, entry: RegisteredTool, arguments: Mapping[str, Any]) -> dict[str, Any]:
        """Check required parameters and coerce values to their annotated types."""
        schema = entry.descriptor.parameters
        kwargs: dict[str, Any] = {}
        for pname in schema.properties:
            if pname not in arguments or arguments[pname] is None:
                if pname in schema.required:
                    raise ValueError(f"Missing required parameter: {pname}")
                continue
            kwargs[pname] = _coerce(arguments[pname], entry.param_types.get(pname))
        unknown = sorted(set(arguments) - set(schema.properties))
        if unknown:
            logger.warning("TOOL_ARG_IGNORED tool=%s args=%s", entry.name, ",".join(unknown))
        return kwargs


def _public_method_names(obj: Any) -> Iterable[str]:
    """Public plain-function attributes along the MRO, most derived first."""
    seen: set[str] = set()
    for klass in type(obj).__mro__:
        if klass is object:
            continue
        for attr, value in vars(klass).items():
            if attr.startswith("_") or attr in seen:
                continue
            seen.add(attr)
            if inspect.isfunction(value):
                yield attr
