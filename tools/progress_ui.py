#!/usr/bin/env python3
"""
Rich Progress UI for Plan Generation
====================================

Terminal rendering for the orchestrator CLI: a stage progress bar, the
final plan summary and the shopping list.
"""

import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from generation_state import GenerationProgress, format_time_remaining

FITPLAN_HEADER = "FitPlan Generator"


class StageTracker:
    """Moves a rich progress bar to match a GenerationProgress snapshot."""

    def __init__(self, progress: Progress, task_id):
        self._progress = progress
        self._task_id = task_id

    def update(self, snapshot: GenerationProgress) -> None:
        self._progress.update(
            self._task_id,
            completed=snapshot.percentage,
            description=f"{snapshot.step_message} ({format_time_remaining(snapshot.estimated_time_remaining_seconds)})",
        )


class PlanProgressUI:
    """Rich terminal UI for a plan generation run."""

    def __init__(self, console: Console = None):
        self.console = console or Console()

    def show_header(self, user_id: str):
        self.console.print(Panel(f"🏋️  Generating a plan for user {user_id}",
                                 title=FITPLAN_HEADER, border_style="blue"))

    def show_validation_errors(self, errors: List[str]):
        self.console.print(Panel("\n".join(f"• {e}" for e in errors),
                                 title="Invalid profile", border_style="red"))

    @contextmanager
    def track(self):
        """Context manager yielding a StageTracker bound to a live progress bar."""
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
        ) as progress:
            task_id = progress.add_task("Starting...", total=100)
            yield StageTracker(progress, task_id)

    def show_summary(self, summary: Optional[Dict[str, Any]], shopping_list=None):
        if summary:
            table = Table(title="Plan summary", show_header=False)
            table.add_column("Field", style="bold")
            table.add_column("Value")
            table.add_row("Goal", str(summary.get("fitnessGoal")))
            table.add_row("Workouts / week", str(summary.get("weeklyWorkouts")))
            table.add_row("Daily calories", str(summary.get("dailyCalories")))
            table.add_row("Weekly cost", f"{summary.get('weeklyCost', 0):.2f} {summary.get('budgetCurrency', '')}")
            table.add_row("Diet", str(summary.get("dietType")))
            for adaptation in summary.get("adaptations") or []:
                table.add_row("", adaptation)
            self.console.print(table)

        if shopping_list is None:
            return
        if shopping_list.status == "error":
            self.console.print(f"⚠️  Shopping list unavailable: {shopping_list.message}", style="yellow")
            return
        items = Table(title="Shopping list")
        items.add_column("Section", style="cyan")
        items.add_column("Item")
        items.add_column("Quantity", justify="right")
        for section, section_items in shopping_list.categories.items():
            for item in section_items:
                items.add_row(section, item.name, f"{item.quantity} {item.unit}".strip())
        self.console.print(items)
        if shopping_list.message:
            self.console.print(f"⚠️  {shopping_list.message}", style="yellow")

    def show_failure(self, progress: GenerationProgress):
        style = "red" if progress.error else "yellow"
        body = progress.error or progress.step_message
        self.console.print(Panel(body, title=f"Plan generation {progress.status.value}", border_style=style))

    def create_timer(self, operation_name: str) -> 'Timer':
        return Timer(operation_name, self.console)


class Timer:
    """Simple timer for measuring operation duration."""

    def __init__(self, operation: str, console: Console):
        self.operation = operation
        self.console = console
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        self.console.print(f"⏱️  Started: {self.operation} at {datetime.now().strftime('%H:%M:%S')}", style="blue")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.time()
        duration = self.end_time - self.start_time
        style = "green" if exc_type is None else "red"
        self.console.print(f"⏱️  Completed: {self.operation} in {duration:.1f}s", style=style)
