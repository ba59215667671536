"""
Executes one task end to end: browser session, program, extraction.
"""

import time
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError

from browserflow.browser.actions import PlaywrightActionExecutor
from browserflow.browser.driver import PlaywrightDriver
from browserflow.browser.human import base_delay
from browserflow.browser.snapshot import PageSnapshotProvider
from browserflow.config.settings import Settings, get_settings
from browserflow.core.types import ExtractionFormat, RunResult, TaskRequest
from browserflow.engine.csv_codec import to_csv_string
from browserflow.engine.interpreter import Interpreter
from browserflow.engine.variables import resolve_template
from browserflow.error_handling.exceptions import BrowserError
from browserflow.monitoring.logger import get_logger, log_performance_metric, log_run_event
from browserflow.orchestration.run_registry import RunRegistry
from browserflow.orchestration.subtask import SubtaskClient
from browserflow.sandbox.executor import ScriptSandbox
from browserflow.security.url_guard import validate_url

DriverFactory = Callable[..., PlaywrightDriver]


class TaskRunner:
    """
    Runs tasks one at a time against a fresh browser session each.

    Only session failures are fatal: the browser cannot start or the initial
    URL cannot be opened. Everything inside the program is recovered by the
    interpreter and reported through the run logs.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[RunRegistry] = None,
        sandbox: Optional[ScriptSandbox] = None,
        subtask_client: Optional[SubtaskClient] = None,
        driver_factory: Optional[DriverFactory] = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            settings: Settings instance; global settings if omitted
            registry: Stop requests and progress listeners shared across runs
            sandbox: Extraction script sandbox
            subtask_client: Client used by ``start`` actions
            driver_factory: Builds the browser driver (tests)
        """
        self.settings = settings or get_settings()
        self.registry = registry or RunRegistry()
        self.sandbox = sandbox or ScriptSandbox(settings=self.settings)
        self.subtask_client = subtask_client or SubtaskClient(settings=self.settings)
        self.driver_factory = driver_factory or PlaywrightDriver

    async def run(self, request: TaskRequest) -> RunResult:
        """
        Execute a task request.

        Args:
            request: Program, variables and extraction settings

        Returns:
            Final URL, run logs, cleaned HTML, extracted data and screenshot

        Raises:
            UrlNotAllowedError: If the initial URL is rejected
            BrowserError: If the browser session cannot be established
        """
        run_id = request.run_id or f"run_{int(time.time() * 1000)}_unknown"
        logger = get_logger(__name__, run_id=run_id)
        include_shadow_dom = (
            request.include_shadow_dom
            if request.include_shadow_dom is not None
            else self.settings.include_shadow_dom
        )
        stateless = (
            request.stateless_execution
            if request.stateless_execution is not None
            else self.settings.stateless_execution
        )

        initial_url = resolve_template(request.url, request.variables) if request.url else ""
        if initial_url and self.settings.block_private_networks:
            await validate_url(initial_url)

        log_run_event("run_started", run_id, data={"url": initial_url, "actions": len(request.actions)})
        started = time.perf_counter()

        driver = self.driver_factory(
            include_shadow_dom=include_shadow_dom,
            stateless=stateless,
            settings=self.settings,
        )
        await driver.start()
        try:
            page = driver.page
            if initial_url:
                try:
                    await driver.navigate(initial_url, timeout=self.settings.navigation_timeout)
                except PlaywrightError as exc:
                    raise BrowserError(
                        f"Failed to open {initial_url}: {exc}", url=initial_url, action="navigate", cause=exc
                    ) from exc

            executor = PlaywrightActionExecutor(
                page,
                stealth=request.stealth,
                run_id=run_id,
                settings=self.settings,
                subtask_client=self.subtask_client,
            )
            interpreter = Interpreter(
                executor,
                progress=self.registry,
                stop_checker=self.registry,
                run_id=run_id,
                settings=self.settings,
            )
            outcome = await interpreter.run(request.actions, request.variables)

            if request.wait:
                await page.wait_for_timeout(request.wait * 1000)
            await page.wait_for_timeout(base_delay(500))

            html = await PageSnapshotProvider(page).snapshot(include_shadow_dom)

            script = request.extraction_script
            if script:
                script = resolve_template(script, outcome.final_vars)
            extraction = await self.sandbox.run(script, html, page.url, include_shadow_dom)

            screenshot_url: Optional[str] = None
            try:
                screenshot_url = await executor.capture_screenshot()
            except (PlaywrightError, OSError) as exc:
                logger.error(f"Final screenshot failed: {exc}")

            data = extraction.result
            if data is None and extraction.logs:
                data = "\n".join(extraction.logs)
            if request.extraction_format == ExtractionFormat.CSV:
                data = to_csv_string(data)

            result = RunResult(
                run_id=run_id,
                final_url=page.url or initial_url,
                logs=outcome.logs,
                html=html,
                data=data,
                screenshot_url=screenshot_url,
                stop_outcome=outcome.stop_outcome,
                stopped_by_user=outcome.stopped_by_user,
                variables=outcome.final_vars,
            )
        finally:
            await driver.stop(persist_state=not stateless)
            self.registry.cleanup(run_id)

        elapsed_ms = (time.perf_counter() - started) * 1000
        log_performance_metric("run_duration", round(elapsed_ms, 1), context={"run_id": run_id})
        log_run_event(
            "run_finished",
            run_id,
            data={"stop_outcome": result.stop_outcome.value, "log_lines": len(result.logs)},
        )
        return result
