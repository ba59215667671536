"""
Out-of-process execution of extraction scripts.

Each script runs in a fresh ``python -m browserflow.sandbox.worker``
process with a scrubbed environment. The process is killed when the time
budget runs out. Failures never raise: they come back as a descriptive
string in ``ScriptResult.result``.
"""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from browserflow.config.settings import Settings, get_settings
from browserflow.core.types import ScriptResult
from browserflow.error_handling.exceptions import SandboxError, ScriptTimeoutError
from browserflow.monitoring.logger import get_logger

logger = get_logger(__name__)

WORKER_MODULE = "browserflow.sandbox.worker"

# Environment variables forwarded to the worker; everything else is dropped.
_ENV_ALLOWLIST = ("PATH", "PYTHONPATH", "SYSTEMROOT", "LANG", "LC_ALL", "VIRTUAL_ENV")


def _worker_env() -> Dict[str, str]:
    env = {key: os.environ[key] for key in _ENV_ALLOWLIST if key in os.environ}
    package_root = str(Path(__file__).resolve().parents[2])
    env["PYTHONPATH"] = os.pathsep.join(
        path for path in (package_root, env.get("PYTHONPATH")) if path
    )
    env["PYTHONIOENCODING"] = "utf-8"
    env["PYTHONDONTWRITEBYTECODE"] = "1"
    return env


class ScriptSandbox:
    """Runs extraction scripts against an HTML snapshot in a worker process."""

    def __init__(
        self,
        timeout_ms: Optional[int] = None,
        python_executable: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the sandbox.

        Args:
            timeout_ms: Hard limit per script; ``sandbox_timeout_ms`` if omitted
            python_executable: Interpreter for the worker; the current one if omitted
            settings: Settings instance; global settings if omitted
        """
        self.settings = settings or get_settings()
        self.timeout_ms = timeout_ms or self.settings.sandbox_timeout_ms
        self.python_executable = python_executable or sys.executable

    async def run(
        self,
        script: Any,
        html: str,
        page_url: str,
        include_shadow_dom: bool = True,
    ) -> ScriptResult:
        """
        Run ``script`` against ``html``.

        Args:
            script: Python source of the script body
            html: Snapshot of the page
            page_url: URL reported by ``data.url()`` and ``window.location``
            include_shadow_dom: Expose the shadow-DOM helpers on ``data``

        Returns:
            The exported result and console output, or an error string result
        """
        if not script or not isinstance(script, str):
            return ScriptResult(result=None, logs=[])

        request = json.dumps({
            "script": script,
            "html": html or "",
            "url": page_url or "",
            "includeShadowDom": include_shadow_dom,
        })

        try:
            payload = await self._run_worker(request)
        except ScriptTimeoutError as exc:
            logger.warning("Extraction script timed out", extra={"error": exc.to_dict()})
            return ScriptResult(result=f"Extraction script error: {exc.message}", logs=[])
        except SandboxError as exc:
            logger.error("Extraction worker failed", extra={"error": exc.to_dict()})
            return ScriptResult(result=f"Worker error: {exc.message}", logs=[])

        logs = payload.get("logs") or []
        return ScriptResult(
            result=payload.get("result"),
            logs=[str(line) for line in logs] if isinstance(logs, list) else [str(logs)],
        )

    async def _run_worker(self, request: str) -> Dict[str, Any]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.python_executable,
                "-m",
                WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_worker_env(),
            )
        except OSError as exc:
            raise SandboxError(f"could not start worker: {exc}", cause=exc) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(request.encode("utf-8")),
                timeout=self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ScriptTimeoutError(
                f"timed out after {self.timeout_ms} ms", timeout_ms=self.timeout_ms, cause=exc
            ) from exc

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise SandboxError(f"exited with code {process.returncode}: {detail}")

        lines: List[str] = [
            line for line in stdout.decode("utf-8", errors="replace").splitlines() if line.strip()
        ]
        if not lines:
            raise SandboxError("worker produced no output")
        try:
            payload = json.loads(lines[-1])
        except ValueError as exc:
            raise SandboxError(f"invalid worker output: {exc}", cause=exc) from exc
        if not isinstance(payload, dict):
            raise SandboxError("invalid worker output: expected an object")
        return payload
