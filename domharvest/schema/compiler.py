"""Schema compiler: descriptor trees to in-page payloads.

Compilation is a pure function of the schema. The result is a node tree
of plain JSON values plus a table of callback sources keyed by generated
placeholder ids (``__fn_0``, ``__fn_1``, ... in depth-first order). The
fixed ``INTERPRETER`` runs the tree inside the page.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from domharvest.schema.fields import Callback, FieldDescriptor, FieldKind, SchemaError, js

DEFAULT_EXTRACTOR = js(
    "(el) => ({ text: el.textContent?.trim(), html: el.innerHTML, tag: el.tagName.toLowerCase() })"
)

_JSON_SCALARS = (str, int, float, bool, type(None))
_TRAILING_TERMINATORS = re.compile(r"[;\s]+$")


class CompileMode(str, Enum):
    PURE = "pure"
    MIXED = "mixed"


@dataclass(frozen=True)
class CompiledSchema:
    """Executable form of a schema.

    ``mode`` is ``pure`` when no callbacks are present; the payload is then
    plain data only.
    """

    root: dict[str, Any]
    callbacks: dict[str, str] = field(default_factory=dict)

    @property
    def mode(self) -> CompileMode:
        return CompileMode.MIXED if self.callbacks else CompileMode.PURE

    @property
    def payload(self) -> dict[str, Any]:
        return {"root": self.root, "callbacks": dict(self.callbacks)}


class _Compiler:
    def __init__(self) -> None:
        self.callbacks: dict[str, str] = {}

    def node(self, value: Any, path: str) -> dict[str, Any]:
        if isinstance(value, FieldDescriptor):
            return self.descriptor(value, path)
        if isinstance(value, Callback):
            return self.callback(value, path)
        if isinstance(value, Mapping):
            return self.obj(value, path)
        if callable(value):
            raise SchemaError(
                f"{path}: Python callables cannot run in the page; wrap JavaScript source with js()"
            )
        return {"kind": "value", "value": _static(value, path)}

    def obj(self, schema: Mapping[str, Any], path: str) -> dict[str, Any]:
        fields = []
        for key, value in schema.items():
            if not isinstance(key, str):
                raise SchemaError(f"{path}: schema keys must be strings, got {key!r}")
            fields.append([key, self.node(value, f"{path}.{key}")])
        return {"kind": "object", "fields": fields}

    def callback(self, callback: Callback, path: str) -> dict[str, Any]:
        source = _TRAILING_TERMINATORS.sub("", callback.source or "").strip()
        if not source:
            raise SchemaError(f"{path}: callback source is empty")
        ref = f"__fn_{len(self.callbacks)}"
        # The interpreter embeds the source as an expression.
        self.callbacks[ref] = source
        return {"kind": "callback", "ref": ref}

    def descriptor(self, desc: FieldDescriptor, path: str) -> dict[str, Any]:
        try:
            kind = FieldKind(desc.kind)
        except ValueError:
            raise SchemaError(f"{path}: unknown field kind {desc.kind!r}") from None
        if kind is FieldKind.TEXT:
            return {
                "kind": kind.value,
                "selector": desc.selector,
                "trim": desc.trim,
                "default": _static(desc.default, path),
            }
        if kind is FieldKind.ATTR:
            if not desc.attribute:
                raise SchemaError(f"{path}: attr() requires an attribute name")
            return {
                "kind": kind.value,
                "selector": desc.selector,
                "attribute": desc.attribute,
                "default": _static(desc.default, path),
            }
        if kind is FieldKind.HTML:
            return {
                "kind": kind.value,
                "selector": desc.selector,
                "default": _static(desc.default, path),
            }
        if kind is FieldKind.EXISTS:
            return {"kind": kind.value, "selector": desc.selector}
        if kind is FieldKind.COUNT:
            _require_selector(desc, kind, path)
            return {"kind": kind.value, "selector": desc.selector}
        if kind is FieldKind.ARRAY:
            _require_selector(desc, kind, path)
            if desc.item is None:
                raise SchemaError(f"{path}: array() requires an item extractor")
            return {
                "kind": kind.value,
                "selector": desc.selector,
                "item": self.node(desc.item, f"{path}[]"),
            }
        raise SchemaError(f"{path}: unsupported field kind {kind!r}")


def _require_selector(desc: FieldDescriptor, kind: FieldKind, path: str) -> None:
    if not desc.selector:
        raise SchemaError(f"{path}: {kind.value}() requires a selector")


def _static(value: Any, path: str) -> Any:
    """Check that ``value`` survives JSON transport unchanged."""
    if isinstance(value, _JSON_SCALARS):
        return value
    if isinstance(value, (list, tuple)):
        return [_static(v, path) for v in value]
    if isinstance(value, Mapping) and all(isinstance(k, str) for k in value):
        return {k: _static(v, path) for k, v in value.items()}
    raise SchemaError(f"{path}: value {value!r} is not JSON-serializable")


def compile_schema(schema: Mapping[str, Any]) -> CompiledSchema:
    """Compile a schema mapping into a ``CompiledSchema``."""
    if not isinstance(schema, Mapping):
        raise SchemaError(f"schema must be a mapping, got {type(schema).__name__}")
    compiler = _Compiler()
    root = compiler.obj(schema, "$")
    return CompiledSchema(root=root, callbacks=compiler.callbacks)


def compile_extractor(extractor: Any = None) -> CompiledSchema:
    """Compile whatever a caller passed as an extractor.

    - ``None``: the default extractor (``text``, ``html``, ``tag``)
    - ``str`` or ``Callback``: a callback applied to each element
    - ``FieldDescriptor``: a single field applied to each element
    - mapping: a schema
    - ``CompiledSchema``: returned unchanged
    """
    if isinstance(extractor, CompiledSchema):
        return extractor
    if extractor is None:
        extractor = DEFAULT_EXTRACTOR
    if isinstance(extractor, str):
        extractor = js(extractor)
    if isinstance(extractor, Mapping):
        return compile_schema(extractor)
    if isinstance(extractor, (Callback, FieldDescriptor)):
        compiler = _Compiler()
        root = compiler.node(extractor, "$")
        return CompiledSchema(root=root, callbacks=compiler.callbacks)
    if callable(extractor):
        raise SchemaError(
            "Python callables cannot run in the page; pass JavaScript source or js(...)"
        )
    raise SchemaError(f"Unsupported extractor type: {type(extractor).__name__}")
