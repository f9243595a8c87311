"""
Worker Task and Terminal UI Tests
=================================

The huey task is called in-process with ``call_local`` against a temporary
store. The rich UI renders into an in-memory console.
"""

import io
import pytest
from unittest.mock import patch

from rich.console import Console

from generation_state import GenerationProgress, GenerationStage, GenerationStatus


@pytest.fixture
def worker_store(plan_store, fake_llm, recording_sleep):
    """Point the worker at the test store and the scripted LLM."""
    from orchestrator import PlanOrchestrator

    real_from_store = PlanOrchestrator.from_store

    def from_store(user_id, store):
        return real_from_store(user_id, store, llm=fake_llm, sleep=recording_sleep)

    with patch("panel.jobs.runner.PlanStore", return_value=plan_store), \
            patch("panel.jobs.runner.PlanOrchestrator.from_store", side_effect=from_store):
        yield plan_store


class TestWorkerTask:

    def test_runs_started_plan_to_completion(self, worker_store, fake_llm, sample_request,
                                             workout_response, sample_meal_plan, day_response):
        from orchestrator import PlanOrchestrator
        from panel.jobs.runner import run_plan_generation

        fake_llm.queue(workout_response, sample_meal_plan, day_response, day_response)
        PlanOrchestrator("u1", llm=fake_llm, store=worker_store).start(sample_request)

        result = run_plan_generation.call_local("u1")

        assert result["status"] == "complete"
        assert result["percentage"] == 100
        assert worker_store.get_active_plan("u1")["summary"]["weeklyWorkouts"] == 4

    def test_skips_run_that_is_not_running(self, worker_store, fake_llm):
        from panel.jobs.runner import run_plan_generation

        worker_store.save_progress("u1", GenerationProgress(status=GenerationStatus.CANCELLED))

        result = run_plan_generation.call_local("u1")

        assert result["status"] == "cancelled"
        assert fake_llm.calls == []

    def test_unknown_user(self, worker_store):
        from panel.jobs.runner import run_plan_generation

        assert run_plan_generation.call_local("nobody") is None


class TestProgressUI:

    def _ui(self):
        from tools.progress_ui import PlanProgressUI

        buffer = io.StringIO()
        return PlanProgressUI(Console(file=buffer, width=120, force_terminal=False)), buffer

    def test_summary_and_shopping_list(self):
        from shopping_list import ShoppingList, ShoppingListItem

        ui, buffer = self._ui()
        shopping = ShoppingList(categories={
            "Produce": [ShoppingListItem("apple", 6, "", "Produce")],
        }, total_cost=6.8, budget_status="under_budget")

        ui.show_summary({"fitnessGoal": "muscleBuild", "weeklyWorkouts": 4, "dailyCalories": 3018,
                         "weeklyCost": 6.8, "budgetCurrency": "GBP", "dietType": "Balanced",
                         "adaptations": ["Excludes peanuts"]}, shopping)

        output = buffer.getvalue()
        assert "3018" in output
        assert "6.80 GBP" in output
        assert "Excludes peanuts" in output
        assert "apple" in output

    def test_shopping_list_error(self):
        from shopping_list import ShoppingList

        ui, buffer = self._ui()
        ui.show_summary(None, ShoppingList(status="error", message="No ingredients"))

        assert "Shopping list unavailable: No ingredients" in buffer.getvalue()

    def test_failure_panel_shows_error(self):
        ui, buffer = self._ui()
        progress = GenerationProgress(current_step=GenerationStage.MEAL_PLAN, status=GenerationStatus.ERROR,
                                      error="Failed to generate meal plan: timeout")

        ui.show_failure(progress)

        output = buffer.getvalue()
        assert "Failed to generate meal plan: timeout" in output
        assert "error" in output

    def test_tracker_follows_percentage(self):
        ui, _ = self._ui()

        with ui.track() as tracker:
            tracker.update(GenerationProgress(current_step=GenerationStage.MEAL_PLAN,
                                              status=GenerationStatus.RUNNING, is_generating=True))
            task = tracker._progress.tasks[0]
            assert task.completed == 50
            assert "Creating meal plan" in task.description
