"""
Invocation of other tasks through the internal HTTP API.
"""

from typing import Any, Dict, Optional

import httpx

from browserflow.config.settings import Settings, get_settings
from browserflow.error_handling.exceptions import SubtaskError
from browserflow.monitoring.logger import get_logger

logger = get_logger(__name__)


class SubtaskClient:
    """Starts a task by id and returns its extracted data."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 300.0,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: API root; ``internal_api_base_url`` if omitted
            api_key: Value of the ``x-api-key`` header; ``internal_api_key`` if omitted
            timeout: Request timeout in seconds
            settings: Settings instance; global settings if omitted
            transport: Custom httpx transport (tests)
        """
        settings = settings or get_settings()
        self.base_url = (base_url or settings.internal_api_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.internal_api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "x-internal-run": "1"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def start(self, task_id: Any, variables: Dict[str, Any]) -> Any:
        """
        Run task ``task_id`` with the caller's variables.

        Returns:
            The response's ``data``, else its ``html``, else the whole payload

        Raises:
            SubtaskError: If the id is missing or the API reports a failure
        """
        if not task_id:
            raise SubtaskError("Missing task id.")

        if not self.api_key:
            logger.debug("No API key available; attempting internal start")

        body = {
            "variables": variables,
            "taskVariables": variables,
            "runSource": "agent_block",
            "taskId": task_id,
        }
        url = f"{self.base_url}/tasks/{task_id}/api"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            raise SubtaskError(
                f"Start task failed: {exc}", task_id=str(task_id), cause=exc
            ) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            detail = None
            if isinstance(payload, dict):
                detail = payload.get("error") or payload.get("message")
            raise SubtaskError(
                f"Start task failed: {detail or response.reason_phrase}",
                task_id=str(task_id),
                status_code=response.status_code,
            )

        if isinstance(payload, dict):
            for key in ("data", "html"):
                if payload.get(key) is not None:
                    return payload[key]
        return payload
