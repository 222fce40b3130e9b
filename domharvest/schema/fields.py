"""Declarative field descriptors for extraction schemas.

A schema is a mapping of output key to one of:

- a ``FieldDescriptor`` built with ``text``, ``attr``, ``html``, ``exists``,
  ``count`` or ``array``
- a nested schema mapping
- a ``Callback`` (JavaScript function source, built with ``js``)
- a static JSON value, emitted unchanged

Example::

    schema = {
        "title": text("h2"),
        "link": attr("a", "href"),
        "tags": array(".tag", text()),
        "id": js("el => el.dataset.id"),
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union


class SchemaError(ValueError):
    """Raised when a schema cannot be compiled."""


class FieldKind(str, Enum):
    TEXT = "text"
    ATTR = "attr"
    HTML = "html"
    EXISTS = "exists"
    COUNT = "count"
    ARRAY = "array"


@dataclass(frozen=True)
class Callback:
    """JavaScript function source invoked on an element inside the page.

    The function must be self-contained: it is rebuilt from its source text
    in the page, so it cannot close over host-side values.
    """

    source: str


@dataclass(frozen=True)
class FieldDescriptor:
    """One declarative extraction instruction."""

    kind: FieldKind
    selector: str | None = None
    attribute: str | None = None
    trim: bool = True
    default: Any = None
    item: Extractor | None = None


Extractor = Union[FieldDescriptor, Callback, Mapping[str, Any]]


def text(selector: str | None = None, *, trim: bool = True, default: Any = None) -> FieldDescriptor:
    """Text content of the matched element (or the current element)."""
    return FieldDescriptor(FieldKind.TEXT, selector=selector, trim=trim, default=default)


def attr(selector: str | None = None, name: str | None = None, *, default: Any = None) -> FieldDescriptor:
    """Value of attribute ``name`` on the matched element (or the current element)."""
    return FieldDescriptor(FieldKind.ATTR, selector=selector, attribute=name, default=default)


def html(selector: str | None = None, *, default: Any = None) -> FieldDescriptor:
    """Inner HTML of the matched element (or the current element)."""
    return FieldDescriptor(FieldKind.HTML, selector=selector, default=default)


def exists(selector: str | None = None) -> FieldDescriptor:
    return FieldDescriptor(FieldKind.EXISTS, selector=selector)


def count(selector: str) -> FieldDescriptor:
    return FieldDescriptor(FieldKind.COUNT, selector=selector)


def array(selector: str, item: Extractor) -> FieldDescriptor:
    """Apply ``item`` to every match of ``selector``, in document order."""
    return FieldDescriptor(FieldKind.ARRAY, selector=selector, item=item)


def js(source: str) -> Callback:
    return Callback(source=source)
