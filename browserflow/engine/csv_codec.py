"""
CSV parsing and serialization for ``csv`` actions and CSV extraction output.
"""

import json
import re
from typing import Any, Dict, List

from browserflow.engine.variables import render_value

_EDGE_WHITESPACE = re.compile(r"^\s|\s$")
_SPECIAL = re.compile(r'[",\n\r]')


def csv_escape(value: Any) -> str:
    """Quote a cell when it holds quotes, commas, newlines or edge whitespace."""
    text = render_value(value)
    if _SPECIAL.search(text) or _EDGE_WHITESPACE.search(text):
        return '"' + text.replace('"', '""') + '"'
    return text


def _split_rows(text: str) -> List[List[str]]:
    rows: List[List[str]] = []
    row: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        if in_quotes:
            next_quote = text.find('"', i)
            if next_quote == -1:
                current.append(text[i:])
                i = length
                break
            current.append(text[i:next_quote])
            i = next_quote
            if i + 1 < length and text[i + 1] == '"':
                current.append('"')
                i += 2
            else:
                in_quotes = False
                i += 1
            continue

        match = _SPECIAL.search(text, i)
        if match is None:
            current.append(text[i:])
            i = length
            break
        current.append(text[i:match.start()])
        i = match.start()
        char = match.group()
        if char == '"':
            in_quotes = True
        elif char == ",":
            row.append("".join(current))
            current = []
        elif char == "\n":
            row.append("".join(current))
            rows.append(row)
            row = []
            current = []
        # "\r" is dropped
        i += 1

    row.append("".join(current))
    if len(row) > 1 or row[0] != "" or rows:
        rows.append(row)
    return rows


def parse_csv(text: Any) -> List[Dict[str, str]]:
    """
    Parse CSV text into row dicts keyed by the header row.

    Quoted fields may contain commas, newlines and doubled quotes. Blank
    header cells are named ``column_N`` (1-based); missing cells are empty.
    """
    if text is None:
        text = ""
    rows = _split_rows(text if isinstance(text, str) else str(text))
    if not rows:
        return []

    header = [
        cell.strip() or f"column_{index + 1}"
        for index, cell in enumerate(rows[0])
    ]
    return [
        {key: cells[index] if index < len(cells) else "" for index, key in enumerate(header)}
        for cells in rows[1:]
    ]


def to_csv_string(raw: Any) -> str:
    """
    Serialize extraction output as CSV.

    Strings holding JSON are decoded first; other strings pass through. A
    list of dicts uses the union of keys (first-seen order) as header; rows
    without dict items are written one value or list per line.
    """
    if raw is None:
        return ""
    if isinstance(raw, str):
        trimmed = raw.strip()
        if trimmed.startswith("{") or trimmed.startswith("["):
            try:
                return to_csv_string(json.loads(trimmed))
            except ValueError:
                return raw
        return raw

    rows = raw if isinstance(raw, list) else [raw]
    if not rows:
        return ""

    keys: List[str] = []
    for row in rows:
        if isinstance(row, dict):
            for key in row:
                if key not in keys:
                    keys.append(key)

    if not keys:
        lines = []
        for row in rows:
            if isinstance(row, list):
                lines.append(",".join(csv_escape(cell) for cell in row))
            else:
                lines.append(csv_escape(row))
        return "\n".join(lines)

    lines = [",".join(csv_escape(key) for key in keys)]
    for row in rows:
        values = row if isinstance(row, dict) else {}
        lines.append(",".join(csv_escape(values.get(key)) for key in keys))
    return "\n".join(lines)
