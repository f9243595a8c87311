"""Generation progress model and the pollable progress surface.

A run walks the seven GenerationStage values in order. ``current_step`` is
the stage being worked on (or about to be), so the percentage is the share
of stages already finished and reaches 100 exactly when the run lands on
COMPLETE.
"""
import asyncio
import math
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Optional

from config import get_config_value


class GenerationStage(IntEnum):
    INITIALIZE = 0
    NUTRITION_CALCULATION = 1
    WORKOUT_PLAN = 2
    MEAL_PLAN = 3
    EXTRACT_INGREDIENTS = 4
    SHOPPING_LIST = 5
    COMPLETE = 6

    @property
    def description(self) -> str:
        return STAGE_DESCRIPTIONS[self]

    @property
    def estimate_seconds(self) -> int:
        """Configured time estimate for this stage."""
        estimates = get_config_value("generation", "stage_estimates", {}) or {}
        return int(estimates.get(self.name, DEFAULT_STAGE_ESTIMATES[self]))

    def next(self) -> "GenerationStage":
        if self is GenerationStage.COMPLETE:
            return self
        return GenerationStage(self + 1)


TOTAL_STEPS = len(GenerationStage) - 1

STAGE_DESCRIPTIONS = {
    GenerationStage.INITIALIZE: 'Initializing plan generation',
    GenerationStage.NUTRITION_CALCULATION: 'Calculating nutritional requirements',
    GenerationStage.WORKOUT_PLAN: 'Generating workout plan',
    GenerationStage.MEAL_PLAN: 'Creating meal plan based on nutritional needs',
    GenerationStage.EXTRACT_INGREDIENTS: 'Extracting ingredients from meal plan',
    GenerationStage.SHOPPING_LIST: 'Building shopping list',
    GenerationStage.COMPLETE: 'Plan generation complete',
}

DEFAULT_STAGE_ESTIMATES = {
    GenerationStage.INITIALIZE: 5,
    GenerationStage.NUTRITION_CALCULATION: 15,
    GenerationStage.WORKOUT_PLAN: 60,
    GenerationStage.MEAL_PLAN: 90,
    GenerationStage.EXTRACT_INGREDIENTS: 45,
    GenerationStage.SHOPPING_LIST: 30,
    GenerationStage.COMPLETE: 0,
}

CANCELLED_MESSAGE = "Plan generation cancelled by user"
STALE_RUN_MESSAGE = "Plan generation timed out and was automatically reset by the system"


class GenerationConflictError(RuntimeError):
    """A run is already active for this user."""


class GenerationStateError(RuntimeError):
    """The requested transition is not allowed from the current state."""


class GenerationStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_STATUSES = {GenerationStatus.COMPLETE, GenerationStatus.CANCELLED, GenerationStatus.ERROR}


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class GenerationProgress:
    """Snapshot of one user's generation run."""
    current_step: GenerationStage = GenerationStage.INITIALIZE
    step_message: str = STAGE_DESCRIPTIONS[GenerationStage.INITIALIZE]
    total_steps: int = TOTAL_STEPS
    estimated_time_remaining_seconds: int = 0
    is_generating: bool = False
    is_complete: bool = False
    error: Optional[str] = None
    status: GenerationStatus = GenerationStatus.IDLE
    updated_at: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def percentage(self) -> int:
        return progress_percentage(self)

    def touch(self) -> None:
        self.updated_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        """
        Polling contract.

        ``error`` is canonical. ``errorMessage`` mirrors it for older
        clients and will be removed.
        """
        return {
            "currentStep": int(self.current_step),
            "stage": self.current_step.name,
            "stepMessage": self.step_message,
            "totalSteps": self.total_steps,
            "estimatedTimeRemaining": self.estimated_time_remaining_seconds,
            "error": self.error,
            "errorMessage": self.error,
            "isComplete": self.is_complete,
            "isGenerating": self.is_generating,
            "status": self.status.value,
            "percentage": self.percentage,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationProgress":
        """Inverse of to_dict(); ``error`` wins over the legacy ``errorMessage``."""
        error = data.get("error")
        if error is None:
            error = data.get("errorMessage")
        try:
            step = GenerationStage(int(data.get("currentStep", 0)))
        except (TypeError, ValueError):
            step = GenerationStage.INITIALIZE
        try:
            status = GenerationStatus(data.get("status", GenerationStatus.IDLE.value))
        except ValueError:
            status = GenerationStatus.IDLE
        return cls(
            current_step=step,
            step_message=data.get("stepMessage") or step.description,
            total_steps=int(data.get("totalSteps", TOTAL_STEPS)),
            estimated_time_remaining_seconds=max(0, int(data.get("estimatedTimeRemaining", 0) or 0)),
            is_generating=bool(data.get("isGenerating", False)),
            is_complete=bool(data.get("isComplete", False)),
            error=error,
            status=status,
            updated_at=data.get("updatedAt", ""),
        )


def progress_percentage(progress: GenerationProgress) -> int:
    """round(step / total * 100), 100 once complete, always within 0..100."""
    if progress.is_complete:
        return 100
    try:
        index = int(progress.current_step)
        total = int(progress.total_steps)
    except (TypeError, ValueError):
        return 0
    if index < 0 or total <= 0:
        return 0
    return max(0, min(100, round(index / total * 100)))


def format_time_remaining(seconds: int) -> str:
    if seconds <= 0:
        return 'Almost done...'
    if seconds < 60:
        return f'{seconds} seconds remaining'
    minutes = math.ceil(seconds / 60)
    return f'About {minutes} minute{"s" if minutes > 1 else ""} remaining'


class ProgressReporter:
    """
    Read side of a generation run.

    Observers get copies, never the orchestrator's own object. The
    remaining-time figure is a local countdown: it restarts from the
    orchestrator's estimate on every stage change and ticks down once per
    second while the run is generating. It is a UI hint only.
    """

    def __init__(self, source: Callable[[], GenerationProgress]):
        self._source = source
        self._stage_key = None
        self._remaining = 0

    def _sync(self) -> GenerationProgress:
        progress = self._source()
        key = (progress.current_step, progress.status)
        if key != self._stage_key:
            self._stage_key = key
            self._remaining = max(0, progress.estimated_time_remaining_seconds)
        return progress

    def get_progress(self) -> GenerationProgress:
        progress = self._sync()
        return replace(progress, estimated_time_remaining_seconds=self._remaining)

    def tick_estimated_time(self) -> int:
        progress = self._sync()
        if progress.is_generating:
            self._remaining = max(0, self._remaining - 1)
        return self._remaining

    def catch_up(self, elapsed_seconds: float) -> int:
        """Apply the ticks a poller missed since the snapshot was written."""
        progress = self._sync()
        if progress.is_generating:
            self._remaining = max(0, self._remaining - max(0, int(elapsed_seconds)))
        return self._remaining

    async def run_countdown(self, interval: float = 1.0, sleep=None,
                            on_tick: Callable[[GenerationProgress], Any] = None) -> None:
        """Tick once per ``interval`` until the run stops generating."""
        sleep = sleep or asyncio.sleep
        while True:
            self.tick_estimated_time()
            snapshot = self.get_progress()
            if on_tick is not None:
                on_tick(snapshot)
            if not snapshot.is_generating:
                return
            await sleep(interval)


def seconds_since(timestamp: str, now: datetime = None) -> float:
    """Seconds elapsed since an ISO timestamp; 0 for missing/invalid input."""
    if not timestamp:
        return 0.0
    try:
        then = datetime.fromisoformat(timestamp)
    except ValueError:
        return 0.0
    return max(0.0, ((now or datetime.now()) - then).total_seconds())


