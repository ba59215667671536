"""
Engine module exports.
"""

from browserflow.engine.block_map import BlockMap, build_block_map
from browserflow.engine.conditions import (
    RegexMatcher,
    evaluate_structured_condition,
    has_structured_condition,
)
from browserflow.engine.csv_codec import csv_escape, parse_csv, to_csv_string
from browserflow.engine.frame import ErrorHandler, ExecutionFrame, ForeachState, RepeatState
from browserflow.engine.interpreter import Interpreter, InterpreterOutcome
from browserflow.engine.variables import (
    RuntimeVars,
    collect_merge_sources,
    extract_bare_reference,
    merge_sources,
    normalize_var_ref,
    parse_value,
    resolve_template,
)

__all__ = [
    # Interpreter
    "Interpreter",
    "InterpreterOutcome",
    "BlockMap",
    "build_block_map",
    "ExecutionFrame",
    "ErrorHandler",
    "ForeachState",
    "RepeatState",
    # Conditions
    "RegexMatcher",
    "evaluate_structured_condition",
    "has_structured_condition",
    # Variables
    "RuntimeVars",
    "resolve_template",
    "extract_bare_reference",
    "normalize_var_ref",
    "parse_value",
    "collect_merge_sources",
    "merge_sources",
    # CSV
    "csv_escape",
    "parse_csv",
    "to_csv_string",
]
