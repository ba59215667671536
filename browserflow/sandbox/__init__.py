"""
Sandbox module exports.
"""

from browserflow.sandbox.executor import ScriptSandbox
from browserflow.sandbox.guard import compile_script, validate_script

__all__ = [
    "ScriptSandbox",
    "compile_script",
    "validate_script",
]
