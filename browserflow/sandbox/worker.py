"""
Extraction worker process.

Reads one JSON request from stdin (``script``, ``html``, ``url``,
``includeShadowDom``), runs the script and writes one JSON response line
(``result``, ``logs``) to stdout. Started fresh for every script by
:class:`browserflow.sandbox.executor.ScriptSandbox`::

    python -m browserflow.sandbox.worker
"""

import asyncio
import json
import sys
from typing import Any, Dict

from browserflow.sandbox.dom import build_bindings, export
from browserflow.sandbox.guard import compile_script


async def run_extraction(
    script: Any, html: str, url: str, include_shadow_dom: bool
) -> Dict[str, Any]:
    """Run one extraction script; script failures become a result string."""
    if not script or not isinstance(script, str):
        return {"result": None, "logs": []}

    try:
        extraction = compile_script(script)
        bindings, console = build_bindings(html, url, include_shadow_dom)
        result = await extraction(**bindings)
        return {"result": export(result), "logs": list(console.buffer)}
    except Exception as exc:
        return {"result": f"Extraction script error: {exc}", "logs": []}


def main() -> int:
    try:
        request = json.loads(sys.stdin.read())
        output = asyncio.run(
            run_extraction(
                request.get("script"),
                request.get("html") or "",
                request.get("url") or "",
                bool(request.get("includeShadowDom", True)),
            )
        )
    except Exception as exc:
        output = {"result": f"Worker error: {exc}", "logs": []}

    sys.stdout.write(json.dumps(output, default=str) + "\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
