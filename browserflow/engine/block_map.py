"""
Block structure resolution for flat action lists.

Maps every block start to its closing ``end`` (and ``if`` to its ``else``)
in one left-to-right pass so the interpreter can jump in constant time.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from browserflow.core.types import BLOCK_START_TYPES, ActionBase


@dataclass
class BlockMap:
    """Jump tables keyed by action index."""

    start_to_end: Dict[int, int] = field(default_factory=dict)
    start_to_else: Dict[int, int] = field(default_factory=dict)
    else_to_end: Dict[int, int] = field(default_factory=dict)
    end_to_start: Dict[int, int] = field(default_factory=dict)
    anomalies: List[str] = field(default_factory=list)


def build_block_map(actions: Sequence[ActionBase]) -> BlockMap:
    """
    Build the jump tables for ``actions``.

    An ``else`` binds to the innermost open ``if`` that has no ``else`` yet.
    An ``end`` closes whatever block is on top of the stack; a stray ``end``
    is ignored. Malformed nesting never raises: unmatched starts simply have
    no entry, and the problems are listed in ``anomalies``.
    """
    block_map = BlockMap()
    stack: List[Tuple[str, int]] = []

    for index, action in enumerate(actions):
        kind = action.type

        if kind in BLOCK_START_TYPES:
            stack.append((kind, index))
            continue

        if kind == "else":
            for start_kind, start_index in reversed(stack):
                if start_kind == "if" and start_index not in block_map.start_to_else:
                    block_map.start_to_else[start_index] = index
                    break
            else:
                block_map.anomalies.append(f"else at {index} has no open if")
            continue

        if kind == "end":
            if not stack:
                block_map.anomalies.append(f"end at {index} has no open block")
                continue
            _, start_index = stack.pop()
            block_map.start_to_end[start_index] = index
            block_map.end_to_start[index] = start_index
            if start_index in block_map.start_to_else:
                block_map.else_to_end[block_map.start_to_else[start_index]] = index

    for start_kind, start_index in stack:
        block_map.anomalies.append(f"{start_kind} at {start_index} is never closed")

    return block_map
