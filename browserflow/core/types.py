"""
Core data models and types for browserflow.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from browserflow.error_handling.exceptions import ActionValidationError


BLOCK_START_TYPES = frozenset({"if", "while", "repeat", "foreach", "on_error"})


class ProgressStatus(str, Enum):
    """Status of a single action as reported to progress listeners."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class StopOutcome(str, Enum):
    """Outcome recorded by a ``stop`` action."""

    SUCCESS = "success"
    ERROR = "error"


class VarType(str, Enum):
    """Types a structured condition can compare as."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class TypeMode(str, Enum):
    """How ``type`` actions treat existing field content."""

    REPLACE = "replace"
    APPEND = "append"


class ExtractionFormat(str, Enum):
    """Serialization applied to the extraction result."""

    JSON = "json"
    CSV = "csv"


class ActionBase(BaseModel):
    """Fields shared by every action kind."""

    # Wire payloads store numbers in text fields; keep them as strings.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
        coerce_numbers_to_str=True,
    )

    id: Optional[str] = Field(None, description="Stable identifier used for progress events")
    disabled: bool = Field(False, description="Skip this action without side effects")
    timeout: Optional[int] = Field(None, ge=0, description="Per-action wait timeout (ms)")


class ConditionalAction(ActionBase):
    """Base for ``if`` and ``while``: structured fields or a free-form expression."""

    value: Optional[str] = Field(None, description="Free-form JavaScript expression")
    condition_var: Optional[str] = None
    condition_var_type: Optional[VarType] = None
    condition_op: Optional[str] = None
    condition_value: Optional[str] = None

    @field_validator("condition_value", mode="before")
    @classmethod
    def stringify_boolean(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return "true" if value else "false"
        return value

    @property
    def has_structured_condition(self) -> bool:
        """True when any structured condition field is set."""
        return bool(
            self.condition_var_type
            or self.condition_op
            or self.condition_var
            or self.condition_value
        )


# Block constructs

class IfAction(ConditionalAction):
    type: Literal["if"]


class WhileAction(ConditionalAction):
    type: Literal["while"]


class RepeatAction(ActionBase):
    type: Literal["repeat"]
    value: Optional[str] = Field(None, description="Iteration count, may reference variables")


class ForeachAction(ActionBase):
    type: Literal["foreach"]
    selector: Optional[str] = Field(None, description="CSS selector whose matches are iterated")
    var_name: Optional[str] = Field(None, description="Array variable to iterate")


class OnErrorAction(ActionBase):
    type: Literal["on_error"]


class ElseAction(ActionBase):
    type: Literal["else"]


class EndAction(ActionBase):
    type: Literal["end"]


# Leaf actions

class NavigateAction(ActionBase):
    type: Literal["navigate", "goto"]
    value: Optional[str] = Field(None, description="Target URL")


class ClickAction(ActionBase):
    type: Literal["click"]
    selector: Optional[str] = Field(None, description="CSS selector or 'x,y' coordinates")


class TypeAction(ActionBase):
    type: Literal["type", "fill"]
    selector: Optional[str] = None
    value: Optional[str] = None
    type_mode: TypeMode = TypeMode.REPLACE


class HoverAction(ActionBase):
    type: Literal["hover"]
    selector: Optional[str] = None


class PressAction(ActionBase):
    type: Literal["press"]
    key: Optional[str] = None


class WaitAction(ActionBase):
    type: Literal["wait"]
    value: Optional[str] = Field(None, description="Seconds to wait")


class SelectAction(ActionBase):
    type: Literal["select"]
    selector: Optional[str] = None
    value: Optional[str] = None


class ScrollAction(ActionBase):
    type: Literal["scroll"]
    selector: Optional[str] = Field(None, description="Scrollable element; page when unset")
    value: Optional[str] = Field(None, description="Scroll distance in pixels")
    key: Optional[str] = Field(None, description="Scroll duration in milliseconds")


class ScreenshotAction(ActionBase):
    type: Literal["screenshot"]
    value: Optional[str] = None
    label: Optional[str] = None


class JavascriptAction(ActionBase):
    type: Literal["javascript"]
    value: Optional[str] = Field(None, description="Script evaluated in the page")


class CsvAction(ActionBase):
    type: Literal["csv"]
    value: Optional[str] = Field(None, description="CSV text; block.output when unset")


class MergeAction(ActionBase):
    type: Literal["merge"]
    value: Optional[str] = Field(None, description="Comma-separated sources")
    var_name: Optional[str] = Field(None, description="Variable receiving the merged value")


class SetAction(ActionBase):
    type: Literal["set"]
    var_name: Optional[str] = None
    value: Optional[str] = None


class StopAction(ActionBase):
    type: Literal["stop"]
    value: Optional[str] = Field(None, description="'error' or 'success'")


class StartAction(ActionBase):
    type: Literal["start"]
    value: Optional[str] = Field(None, description="Id of the task to invoke")


Action = Annotated[
    Union[
        IfAction,
        WhileAction,
        RepeatAction,
        ForeachAction,
        OnErrorAction,
        ElseAction,
        EndAction,
        NavigateAction,
        ClickAction,
        TypeAction,
        HoverAction,
        PressAction,
        WaitAction,
        SelectAction,
        ScrollAction,
        ScreenshotAction,
        JavascriptAction,
        CsvAction,
        MergeAction,
        SetAction,
        StopAction,
        StartAction,
    ],
    Field(discriminator="type"),
]

_ACTION_LIST_ADAPTER = TypeAdapter(List[Action])


def parse_actions(raw: Union[str, List[Any]]) -> List[ActionBase]:
    """
    Validate a raw action list (or its JSON text) into typed actions.

    Args:
        raw: List of action dicts or a JSON string encoding one

    Returns:
        Ordered list of immutable action models

    Raises:
        ActionValidationError: If the payload is not a valid action list
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ActionValidationError(
                "Invalid actions JSON format.",
                validation_type="json",
                cause=exc,
            ) from exc

    if not isinstance(raw, list):
        raise ActionValidationError(
            "Actions array is required.", validation_type="structure"
        )

    try:
        return _ACTION_LIST_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        failed = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise ActionValidationError(
            f"Invalid action list ({len(failed)} error(s))",
            validation_type="schema",
            failed_rules=failed,
            cause=exc,
        ) from exc


class StealthOptions(BaseModel):
    """Human-like behaviour toggles handed to the action executor."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    human_typing: bool = Field(default=False, description="Type character by character")
    allow_typos: bool = Field(default=False, description="Inject and correct typos")
    idle_movements: bool = Field(default=False, description="Drift the mouse while waiting")
    overscroll: bool = Field(default=False, description="Overshoot scroll targets")
    dead_clicks: bool = Field(default=False, description="Click neutral areas occasionally")
    fatigue: bool = Field(default=False, description="Slow down as the run progresses")
    natural_typing: bool = Field(default=False, description="Typing bursts and pauses")


class ProgressEvent(BaseModel):
    """Per-action progress notification."""

    action_id: Optional[str] = None
    status: ProgressStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ScriptResult(BaseModel):
    """Outcome of one sandboxed extraction script."""

    result: Any = None
    logs: List[str] = Field(default_factory=list)


class TaskRequest(BaseModel):
    """Everything needed to execute one run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: Optional[str] = None
    url: Optional[str] = Field(None, description="Initial URL, may reference variables")
    actions: List[Action] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    extraction_script: Optional[str] = None
    extraction_format: ExtractionFormat = ExtractionFormat.JSON
    include_shadow_dom: Optional[bool] = None
    stateless_execution: Optional[bool] = None
    wait: Optional[float] = Field(None, ge=0, description="Seconds to wait after the program")
    stealth: StealthOptions = Field(default_factory=StealthOptions)

    @field_validator("actions", mode="before")
    @classmethod
    def parse_action_payload(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value

    @field_validator("variables", mode="before")
    @classmethod
    def flatten_variable_definitions(cls, value: Any) -> Any:
        """Accept ``{name: {type, value}}`` definitions as well as plain values."""
        if not isinstance(value, dict):
            return value or {}
        flattened: Dict[str, Any] = {}
        for name, definition in value.items():
            if (
                isinstance(definition, dict)
                and set(definition.keys()) == {"type", "value"}
                and definition["type"] in {t.value for t in VarType}
            ):
                flattened[name] = definition["value"]
            else:
                flattened[name] = definition
        return flattened

    @field_validator("extraction_format", mode="before")
    @classmethod
    def normalize_format(cls, value: Any) -> Any:
        if value is None:
            return ExtractionFormat.JSON
        return "csv" if str(value).lower() == "csv" else "json"


class RunResult(BaseModel):
    """Result bundle returned for a finished run."""

    run_id: Optional[str] = None
    final_url: str = ""
    logs: List[str] = Field(default_factory=list)
    html: str = ""
    data: Any = None
    screenshot_url: Optional[str] = None
    stop_outcome: StopOutcome = StopOutcome.SUCCESS
    stopped_by_user: bool = False
    variables: Dict[str, Any] = Field(default_factory=dict)
