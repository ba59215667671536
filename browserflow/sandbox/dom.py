"""
Host objects exposed to extraction scripts.

Everything a script can touch is wrapped in :class:`SafeProxy`. A proxy only
answers the attributes listed for its target's type in
:data:`EXPOSED_ATTRIBUTES`; everything else raises AttributeError. Values
crossing into the script are wrapped; values crossing back (call arguments,
callback results) are unwrapped, and script callbacks handed to host code
get their arguments wrapped in turn. Modules, classes and free functions are
never handed to a script.
"""

from collections.abc import Iterator
from types import BuiltinMethodType, MethodType, ModuleType
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

PARSER = "html.parser"

_PRIMITIVES = (type(None), bool, int, float)

_METHOD_TYPES = (MethodType, BuiltinMethodType)

TAG_ATTRIBUTES = frozenset({
    "name", "attrs", "text", "string", "strings", "stripped_strings",
    "contents", "children", "descendants", "parent",
    "next_sibling", "previous_sibling",
    "select", "select_one",
    "find", "find_all", "find_parent", "find_parents",
    "find_next_sibling", "find_next_siblings",
    "find_previous_sibling", "find_previous_siblings",
    "get", "get_text", "has_attr", "decode_contents", "prettify",
})


class SafeProxy:
    """View of a host object limited to the attributes exposed for its type."""

    __slots__ = ("_target", "_exposed")

    def __init__(self, target: Any, exposed: Optional[FrozenSet[str]] = None) -> None:
        object.__setattr__(self, "_target", target)
        object.__setattr__(
            self, "_exposed", exposed if exposed is not None else exposed_attributes(target)
        )

    def __getattribute__(self, name: str) -> Any:
        if name not in object.__getattribute__(self, "_exposed"):
            raise AttributeError(f"'{name}' is not available to extraction scripts")
        target = object.__getattribute__(self, "_target")
        try:
            value = getattr(target, name)
        except AttributeError:
            # Keeps the host object out of the exception's ``obj``.
            raise AttributeError(name) from None
        if isinstance(value, _METHOD_TYPES) and getattr(value, "__self__", None) is target:
            return SafeProxy(value, frozenset())
        return to_guest(value)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"cannot set attribute '{name}'")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"cannot delete attribute '{name}'")

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        target = object.__getattribute__(self, "_target")
        if not _is_callable_target(target):
            raise TypeError(f"'{type(target).__name__}' object is not callable")
        result = target(
            *[to_host(arg) for arg in args],
            **{key: to_host(value) for key, value in kwargs.items()},
        )
        return to_guest(result)

    def __getitem__(self, key: Any) -> Any:
        return to_guest(object.__getattribute__(self, "_target")[to_host(key)])

    def __setitem__(self, key: Any, value: Any) -> None:
        object.__getattribute__(self, "_target")[to_host(key)] = to_host(value)

    def __contains__(self, item: Any) -> bool:
        return to_host(item) in object.__getattribute__(self, "_target")

    def __iter__(self):
        for item in object.__getattribute__(self, "_target"):
            yield to_guest(item)

    def __len__(self) -> int:
        return len(object.__getattribute__(self, "_target"))

    def __bool__(self) -> bool:
        return bool(object.__getattribute__(self, "_target"))

    def __eq__(self, other: Any) -> bool:
        return object.__getattribute__(self, "_target") == to_host(other)

    def __hash__(self) -> int:
        return hash(object.__getattribute__(self, "_target"))

    def __str__(self) -> str:
        return str(object.__getattribute__(self, "_target"))

    def __repr__(self) -> str:
        return repr(object.__getattribute__(self, "_target"))


def exposed_attributes(target: Any) -> FrozenSet[str]:
    """Attribute names a script may read on ``target``; empty for unknown types."""
    for kind, names in EXPOSED_ATTRIBUTES:
        if isinstance(target, kind):
            return names
    return frozenset()


def _is_callable_target(target: Any) -> bool:
    # Bound methods only reach a proxy through an exposed attribute.
    if isinstance(target, _METHOD_TYPES):
        return True
    return isinstance(target, type) and target in CONSTRUCTORS


def to_guest(value: Any) -> Any:
    """
    Wrap a host value for the script.

    Raises:
        TypeError: For modules, classes other than :data:`CONSTRUCTORS`, and
            functions or methods not reached through an exposed attribute
    """
    if isinstance(value, SafeProxy) or isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, str):
        # Drops NavigableString's links back into the tree.
        return str(value)
    if isinstance(value, (list, tuple)):
        return [to_guest(item) for item in value]
    if isinstance(value, dict):
        return {key: to_guest(item) for key, item in value.items()}
    if isinstance(value, ModuleType) or (
        isinstance(value, type) and value not in CONSTRUCTORS
    ):
        raise TypeError(f"{value!r} is not available to extraction scripts")
    if isinstance(value, type):
        return SafeProxy(value, frozenset())
    if callable(value) and not isinstance(value, Tag):
        raise TypeError(f"{type(value).__name__} objects are not available to extraction scripts")
    if isinstance(value, Iterator):
        return [to_guest(item) for item in value]
    return SafeProxy(value)


def to_host(value: Any) -> Any:
    """Unwrap a script value for host code."""
    if isinstance(value, SafeProxy):
        return object.__getattribute__(value, "_target")
    if isinstance(value, list):
        return [to_host(item) for item in value]
    if isinstance(value, tuple):
        return tuple(to_host(item) for item in value)
    if isinstance(value, dict):
        return {key: to_host(item) for key, item in value.items()}
    if callable(value) and not isinstance(value, type):
        return _guest_callback(value)
    return value


def _guest_callback(func: Any) -> Any:
    def call(*args: Any, **kwargs: Any) -> Any:
        result = func(
            *[to_guest(arg) for arg in args],
            **{key: to_guest(item) for key, item in kwargs.items()},
        )
        return to_host(result)

    return call


def export(value: Any) -> Any:
    """Convert a script result to plain JSON data; DOM nodes become HTML."""
    if isinstance(value, SafeProxy):
        value = object.__getattribute__(value, "_target")
    if isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, (str, Tag)):
        return str(value)
    if isinstance(value, dict):
        return {str(key): export(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [export(item) for item in value]
    return str(value)


class Console:
    """Buffers ``log``/``warn``/``error`` output of a script."""

    def __init__(self) -> None:
        self.buffer: List[str] = []

    def _write(self, *args: Any) -> None:
        self.buffer.append(" ".join(str(arg) for arg in args))

    def log(self, *args: Any) -> None:
        self._write(*args)

    def warn(self, *args: Any) -> None:
        self._write(*args)

    def error(self, *args: Any) -> None:
        self._write(*args)


class DOMParser:
    """Parses markup into a separate document."""

    def parse_from_string(self, markup: str, mime_type: str = "text/html") -> BeautifulSoup:
        return BeautifulSoup(markup or "", PARSER)


class Location:
    """Minimal ``window.location``."""

    def __init__(self, href: str) -> None:
        self.href = href

    def __str__(self) -> str:
        return self.href


class Window:
    """Minimal ``window`` exposing the snapshot document."""

    def __init__(self, document: BeautifulSoup, url: str) -> None:
        self.document = document
        self.location = Location(url)
        self.DOMParser = DOMParser


class ExtractionData:
    """The ``data`` binding: snapshot accessors and shadow-DOM helpers."""

    def __init__(self, html: str, url: str, window: Window, include_shadow_dom: bool) -> None:
        self._html = html
        self._url = url
        self.window = window
        self.document = window.document
        if include_shadow_dom:
            self.shadow_query_all = self._shadow_query_all
            self.shadow_text = self._shadow_text
        else:
            self.shadow_query_all = None
            self.shadow_text = None

    def html(self) -> str:
        return self._html

    def url(self) -> str:
        return self._url

    def _shadow_query_all(self, selector: str, root: Optional[Tag] = None) -> List[Tag]:
        """
        Elements matching ``selector`` under ``root``, including the content of
        ``<template data-shadowroot>`` elements flattened from shadow roots.
        """
        if not selector:
            return []
        root = root if root is not None else self.document
        candidates: List[Tag] = []
        if isinstance(root, Tag) and not isinstance(root, BeautifulSoup):
            candidates.append(root)
        candidates.extend(root.find_all(True))
        return [element for element in candidates if element.css.match(selector)]

    def _shadow_text(self, root: Optional[Tag] = None) -> List[str]:
        root = root if root is not None else self.document
        return list(root.stripped_strings)


# Checked in order; BeautifulSoup documents are Tags.
EXPOSED_ATTRIBUTES: Tuple[Tuple[type, FrozenSet[str]], ...] = (
    (Tag, TAG_ATTRIBUTES),
    (ExtractionData, frozenset({
        "html", "url", "window", "document", "shadow_query_all", "shadow_text",
    })),
    (Window, frozenset({"document", "location", "DOMParser"})),
    (Location, frozenset({"href"})),
    (Console, frozenset({"log", "warn", "error"})),
    (DOMParser, frozenset({"parse_from_string"})),
)

# Classes a script may instantiate.
CONSTRUCTORS = frozenset({DOMParser})


def build_bindings(
    html: str, url: str, include_shadow_dom: bool
) -> Tuple[Dict[str, Any], Console]:
    """
    Create the script's bindings for one snapshot.

    Returns:
        Mapping of binding name to wrapped object, and the console whose
        buffer collects the script's log output
    """
    document = BeautifulSoup(html or "", PARSER)
    window = Window(document, url or "")
    console = Console()
    data = ExtractionData(html or "", url or "", window, include_shadow_dom)

    bindings = {
        "data": SafeProxy(data),
        "window": SafeProxy(window),
        "document": SafeProxy(document),
        "DOMParser": SafeProxy(DOMParser),
        "console": SafeProxy(console),
        "print": SafeProxy(console.log),
    }
    return bindings, console
