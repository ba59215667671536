"""
Runtime variables and ``{$name}`` template resolution.

Variables live in a flat dict keyed by possibly-dotted names. Reserved keys
are rebound by the interpreter: ``loop.index``, ``loop.count``,
``loop.item``, ``loop.text``, ``loop.html`` on every loop iteration and
``block.output`` after every leaf result or condition.
"""

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

TEMPLATE_PATTERN = re.compile(r"\{\$([\w.]+)\}")
BARE_REFERENCE_PATTERN = re.compile(r"^\{\$([\w.]+)\}$")
NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")

BLOCK_OUTPUT = "block.output"
LOOP_INDEX = "loop.index"
LOOP_COUNT = "loop.count"
LOOP_ITEM = "loop.item"
LOOP_TEXT = "loop.text"
LOOP_HTML = "loop.html"

RESERVED_NAMES = frozenset({
    BLOCK_OUTPUT, LOOP_INDEX, LOOP_COUNT, LOOP_ITEM, LOOP_TEXT, LOOP_HTML,
})


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_json(value: Any) -> str:
    """Compact JSON rendering used for objects and arrays in templates."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def render_value(value: Any) -> str:
    """Stringify a variable value for interpolation."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (str, int)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return to_json(value)
    return str(value)


def resolve_template(text: Any, variables: Dict[str, Any]) -> Any:
    """
    Replace every ``{$name}`` in ``text`` with the rendered variable.

    ``{$now}`` renders the current UTC timestamp. Unknown and ``None``
    variables render as an empty string. Non-string input is returned as is.
    """
    if not isinstance(text, str):
        return text

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name == "now":
            return utc_timestamp()
        return render_value(variables.get(name))

    return TEMPLATE_PATTERN.sub(_substitute, text)


def extract_bare_reference(raw: Any) -> Optional[str]:
    """Return ``name`` if ``raw`` is exactly one ``{$name}`` token, else None."""
    if not isinstance(raw, str):
        return None
    match = BARE_REFERENCE_PATTERN.match(raw.strip())
    return match.group(1) if match else None


def normalize_var_ref(raw: Any) -> str:
    """Return the bare reference name, or the trimmed literal."""
    if raw is None or raw == "":
        return ""
    text = str(raw).strip()
    return extract_bare_reference(text) or text


def parse_value(text: Any) -> Any:
    """
    Best-effort conversion of text to a typed value.

    ``true``/``false`` become booleans, integer and decimal literals become
    numbers, and text starting with ``{`` or ``[`` is decoded as JSON when it
    parses. Everything else, including non-strings, is returned unchanged.
    """
    if not isinstance(text, str):
        return text

    trimmed = text.strip()
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False
    if NUMBER_PATTERN.match(trimmed):
        return float(trimmed) if "." in trimmed else int(trimmed)
    if trimmed.startswith("{") or trimmed.startswith("["):
        try:
            return json.loads(trimmed)
        except ValueError:
            return text
    return text


class RuntimeVars:
    """Typed accessor over the variable map of one run."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})
        self._values.setdefault(BLOCK_OUTPUT, None)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def has(self, name: str) -> bool:
        return name in self._values

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of the current variables."""
        return dict(self._values)

    @property
    def block_output(self) -> Any:
        return self._values.get(BLOCK_OUTPUT)

    def set_block_output(self, value: Any) -> None:
        self._values[BLOCK_OUTPUT] = value

    def resolve(self, value: Any) -> Any:
        """Template-resolve ``value`` against the current variables."""
        return resolve_template(value, self._values)

    def lookup_ref(self, raw: Any) -> Any:
        """
        Resolve a variable-or-literal operand, preserving the variable's type.

        A bare ``{$name}`` or a plain name present in the map yields the
        stored value; anything else is template-resolved.
        """
        name = normalize_var_ref(raw)
        if name and name in self._values:
            return self._values[name]
        if isinstance(raw, str):
            return self.resolve(raw)
        return raw

    def bind_loop_item(self, item: Any, index: int, count: int) -> None:
        """Rebind the ``loop.*`` variables for one iteration."""
        self._values[LOOP_INDEX] = index
        self._values[LOOP_COUNT] = count
        self._values[LOOP_ITEM] = item
        if isinstance(item, dict):
            if "text" in item:
                self._values[LOOP_TEXT] = item["text"]
            if "html" in item:
                self._values[LOOP_HTML] = item["html"]
        else:
            self._values[LOOP_TEXT] = item
            self._values[LOOP_HTML] = ""


def collect_merge_sources(raw: Optional[str], variables: RuntimeVars) -> List[Any]:
    """
    Split a ``merge`` value into its sources.

    The value is split on commas before resolution, so each
    ``{$name}`` or known variable name contributes its typed value; other
    tokens are resolved and parsed with :func:`parse_value`.
    """
    if not raw:
        return []

    sources: List[Any] = []
    for token in (part.strip() for part in str(raw).split(",")):
        if not token:
            continue
        name = normalize_var_ref(token)
        if variables.has(name):
            sources.append(variables.get(name))
        else:
            sources.append(parse_value(variables.resolve(token)))
    return sources


def merge_sources(sources: List[Any]) -> Any:
    """
    Combine merge sources by shape.

    All lists are concatenated, all dicts are shallow-merged left to right,
    and any mix is flattened one level into a list.
    """
    if not sources:
        return []
    if all(isinstance(source, list) for source in sources):
        return [item for source in sources for item in source]
    if all(isinstance(source, dict) for source in sources):
        merged: Dict[str, Any] = {}
        for source in sources:
            merged.update(source)
        return merged

    flattened: List[Any] = []
    for source in sources:
        if isinstance(source, list):
            flattened.extend(source)
        else:
            flattened.append(source)
    return flattened
