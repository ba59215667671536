"""
browserflow - block-structured browser workflow runner.
Main entry point for the application.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from browserflow import __version__
from browserflow.config.settings import get_settings
from browserflow.core.types import RunResult, TaskRequest
from browserflow.error_handling.exceptions import BrowserFlowError
from browserflow.monitoring.logger import get_logger, setup_logging
from browserflow.orchestration.task_runner import TaskRunner

console = Console()
logger = get_logger("main")


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description=f"browserflow - block-structured browser workflow runner v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a task file
  python -m browserflow.main task.json

  # Override variables and the start URL
  python -m browserflow.main task.json --var query=shoes --url https://example.com

  # Watch the browser and write CSV output
  python -m browserflow.main task.json --headed --format csv -o out.csv
        """,
    )

    parser.add_argument(
        "task",
        type=Path,
        help="Path to a task JSON file (actions, url, variables, extractionScript)",
    )
    parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a variable; may be repeated",
    )
    parser.add_argument(
        "-u", "--url",
        help="Initial URL to navigate to (overrides the task file)",
    )
    parser.add_argument(
        "--run-id",
        help="Identifier used in logs and capture file names",
    )

    headless_group = parser.add_mutually_exclusive_group()
    headless_group.add_argument(
        "--headless",
        dest="headless",
        action="store_true",
        default=None,
        help="Run browser in headless mode",
    )
    headless_group.add_argument(
        "--headed",
        dest="headless",
        action="store_false",
        help="Show the browser window",
    )

    parser.add_argument(
        "--format",
        choices=["json", "csv"],
        help="Extraction output format (default: task file, else json)",
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Write the run result (or CSV data) to this file",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: from settings)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose structured logging output (JSON)",
    )

    return parser


def parse_var_overrides(pairs: List[str]) -> Dict[str, str]:
    """Turn ``NAME=VALUE`` arguments into a dict."""
    overrides: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid --var '{pair}', expected NAME=VALUE")
        overrides[name.strip()] = value
    return overrides


def load_task(task_path: Path) -> Dict[str, Any]:
    """Load a task definition from JSON file."""
    try:
        with open(task_path, "r", encoding="utf-8") as f:
            task = json.load(f)
    except FileNotFoundError:
        console.print(f"[red]Error: Task file not found: {task_path}[/red]")
        sys.exit(1)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: Invalid JSON in task file: {e}[/red]")
        sys.exit(1)

    if isinstance(task, list):
        task = {"actions": task}
    if not isinstance(task, dict) or "actions" not in task:
        console.print("[red]Error: Task file must contain an 'actions' array[/red]")
        sys.exit(1)
    return task


def build_request(task: Dict[str, Any], parsed_args: argparse.Namespace) -> TaskRequest:
    """Merge the task file with command line overrides."""
    payload = dict(task)
    variables = dict(payload.get("variables") or {})
    variables.update(parse_var_overrides(parsed_args.var))
    payload["variables"] = variables
    if parsed_args.url:
        payload["url"] = parsed_args.url
    if parsed_args.format:
        payload["extractionFormat"] = parsed_args.format
    if parsed_args.run_id:
        payload["runId"] = parsed_args.run_id
    return TaskRequest.model_validate(payload)


def print_summary(result: RunResult) -> None:
    """Print a summary of the finished run."""
    table = Table(title="Run Summary", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    outcome_color = "green" if result.stop_outcome.value == "success" else "red"
    table.add_row("Run ID", result.run_id or "-")
    table.add_row("Final URL", result.final_url or "-")
    table.add_row("Outcome", f"[{outcome_color}]{result.stop_outcome.value}[/{outcome_color}]")
    table.add_row("Stopped by user", "yes" if result.stopped_by_user else "no")
    table.add_row("Log lines", str(len(result.logs)))
    table.add_row("Screenshot", result.screenshot_url or "-")
    console.print(table)

    if result.logs:
        console.print(Panel("\n".join(result.logs), title="Run Log", expand=False))


def write_output(result: RunResult, output: Path) -> None:
    """Write CSV data as-is, anything else as the JSON result bundle."""
    output.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(result.data, str) and output.suffix.lower() == ".csv":
        output.write_text(result.data, encoding="utf-8")
    else:
        output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    console.print(f"[green]Result saved to:[/green] {output}")


async def run_task(request: TaskRequest, output: Optional[Path] = None) -> int:
    """Run one task and report the result."""
    runner = TaskRunner()
    console.print(f"[cyan]Running {len(request.actions)} action(s)...[/cyan]")
    try:
        result = await runner.run(request)
    except BrowserFlowError as e:
        logger.error("Run failed", extra={"error": e.to_dict()})
        console.print(f"\n[red]Error: {e.message}[/red]")
        return 1

    print_summary(result)
    if output:
        write_output(result, output)
    else:
        console.print_json(json.dumps(result.data, default=str))
    return 0 if result.stop_outcome.value == "success" else 2


async def async_main(args: Optional[list] = None) -> int:
    """Async main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    settings = get_settings()

    if parsed_args.log_level:
        settings.log_level = parsed_args.log_level
    if parsed_args.verbose:
        settings.log_format = "json"
    else:
        settings.log_format = "text"
    if parsed_args.headless is not None:
        settings.browser_headless = parsed_args.headless

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
    )

    task = load_task(parsed_args.task)
    try:
        request = build_request(task, parsed_args)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Error: Invalid task: {e}[/red]")
        return 1

    return await run_task(request, parsed_args.output)


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for browserflow.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted by user[/yellow]")
        return 130
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
