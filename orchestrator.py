#!/usr/bin/env python3
"""
FitPlan Orchestrator - Plan Generation Pipeline
===============================================

Drives one user's plan generation through its stages:
0. Validate and record the request
1. Calculate nutrition targets
2. Generate the workout plan
3. Generate the meal plan
4. Extract ingredients from the meal plan
5. Build the shopping list, summarise and save the plan
6. Complete

A failed stage stops the run in ``error``; the user resumes it with
Continue, which retries that stage. Cancellation can come from this
process or, through the PlanStore, from another one.

USAGE:
    python orchestrator.py --profile profile.json
    python orchestrator.py --profile profile.json --user-id 42
    python orchestrator.py --profile profile.json --no-persist
"""

import sys
import json
import time
import uuid
import asyncio
import argparse
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Union

from generation_state import (
    CANCELLED_MESSAGE,
    GenerationConflictError,
    GenerationProgress,
    GenerationStage,
    GenerationStateError,
    GenerationStatus,
    ProgressReporter,
)
from ingredient_extractor import CategorizedIngredientList, IngredientExtractor
from llm_client import LLMClient
from nutrition import NutritionTargets, calculate_nutrition_targets
from plan_generator import (
    PlanGenerationError,
    PlanGenerator,
    PlanRequest,
    create_plan_summary,
    validate_plan_request,
)
from shopping_list import ShoppingList, generate_shopping_list
from tools.logging_utils import get_logger

logger = get_logger(__name__)


# =============================================================================
# STAGE OUTPUTS
# =============================================================================

# What each stage produces. COMPLETE produces nothing.
STAGE_OUTPUT_TYPES = {
    GenerationStage.INITIALIZE: PlanRequest,
    GenerationStage.NUTRITION_CALCULATION: NutritionTargets,
    GenerationStage.WORKOUT_PLAN: dict,
    GenerationStage.MEAL_PLAN: dict,
    GenerationStage.EXTRACT_INGREDIENTS: CategorizedIngredientList,
    GenerationStage.SHOPPING_LIST: ShoppingList,
}


class StageResults:
    """
    Outputs of the finished stages, keyed by stage.

    Each stage has exactly one payload type (STAGE_OUTPUT_TYPES); setting a
    payload of the wrong type is a programming error and raises TypeError.
    """

    def __init__(self):
        self._outputs: Dict[GenerationStage, Any] = {}
        self.summary: Optional[Dict[str, Any]] = None
        self.plan_id: Optional[int] = None

    def set(self, stage: GenerationStage, payload: Any) -> None:
        expected = STAGE_OUTPUT_TYPES.get(stage)
        if expected is None:
            raise TypeError(f"{stage.name} produces no output")
        if not isinstance(payload, expected):
            raise TypeError(f"{stage.name} output must be {expected.__name__}, got {type(payload).__name__}")
        self._outputs[stage] = payload

    def get(self, stage: GenerationStage) -> Any:
        return self._outputs.get(stage)

    def __contains__(self, stage: GenerationStage) -> bool:
        return stage in self._outputs

    def discard(self, stage: GenerationStage) -> None:
        self._outputs.pop(stage, None)
        if stage is GenerationStage.SHOPPING_LIST:
            self.summary = None

    def clear(self) -> None:
        self._outputs.clear()
        self.summary = None
        self.plan_id = None

    @property
    def request(self) -> Optional[PlanRequest]:
        return self._outputs.get(GenerationStage.INITIALIZE)

    @property
    def nutrition(self) -> Optional[NutritionTargets]:
        return self._outputs.get(GenerationStage.NUTRITION_CALCULATION)

    @property
    def workout_plan(self) -> Optional[Dict[str, Any]]:
        return self._outputs.get(GenerationStage.WORKOUT_PLAN)

    @property
    def meal_plan(self) -> Optional[Dict[str, Any]]:
        return self._outputs.get(GenerationStage.MEAL_PLAN)

    @property
    def ingredients(self) -> Optional[CategorizedIngredientList]:
        return self._outputs.get(GenerationStage.EXTRACT_INGREDIENTS)

    @property
    def shopping_list(self) -> Optional[ShoppingList]:
        return self._outputs.get(GenerationStage.SHOPPING_LIST)

    def serialize(self, stage: GenerationStage) -> Any:
        payload = self._outputs[stage]
        return payload if isinstance(payload, dict) else payload.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        return {stage.name: self.serialize(stage) for stage in self._outputs}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageResults":
        """Rebuild from persisted stage outputs; unknown keys are ignored."""
        results = cls()
        for name, raw in (data or {}).items():
            try:
                stage = GenerationStage[name]
            except KeyError:
                continue
            payload_type = STAGE_OUTPUT_TYPES.get(stage)
            if payload_type is None:
                continue
            results.set(stage, dict(raw) if payload_type is dict else payload_type.from_dict(raw))
        return results

    def final_plan(self) -> Dict[str, Any]:
        return {
            "request": self.request.to_dict() if self.request else None,
            "nutrition": self.nutrition.to_dict() if self.nutrition else None,
            "workoutPlan": self.workout_plan,
            "mealPlan": self.meal_plan,
            "shoppingList": self.shopping_list.to_dict() if self.shopping_list else None,
            "summary": self.summary,
        }


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class PlanOrchestrator:
    """
    State machine for one user's plan generation.

    All progress reads go through ``progress()`` (or the reporter), which
    hands out copies. When a PlanStore is attached every transition is
    persisted. Each run has an id; a cancel or reset written by another
    process is honoured before a stage starts and before its result is
    applied, and the store refuses writes from a run it no longer holds.
    """

    def __init__(self, user_id: Union[str, int], llm=None, extractor: IngredientExtractor = None,
                 generator: PlanGenerator = None, store=None,
                 sleep: Callable[[float], Any] = None):
        self.user_id = str(user_id)
        self.store = store
        self._sleep = sleep or asyncio.sleep
        if llm is None and (extractor is None or generator is None):
            llm = LLMClient()
        self.extractor = extractor or IngredientExtractor(llm, sleep=self._sleep)
        self.generator = generator or PlanGenerator(llm)

        self.results = StageResults()
        self._raw_request: Optional[Dict[str, Any]] = None
        self._progress = GenerationProgress()
        self._cancelled = False
        self._run_id: Optional[str] = None
        self._reporter = ProgressReporter(self.progress)

    @classmethod
    def from_store(cls, user_id: Union[str, int], store, **kwargs) -> "PlanOrchestrator":
        """Rehydrate the user's run from the store (worker side)."""
        orchestrator = cls(user_id, store=store, **kwargs)
        progress = store.get_progress(orchestrator.user_id)
        if progress is None:
            raise GenerationStateError(f"No plan generation found for user {orchestrator.user_id}")
        orchestrator._progress = progress
        orchestrator._raw_request = store.get_request(orchestrator.user_id)
        orchestrator.results = StageResults.from_dict(store.get_stage_outputs(orchestrator.user_id))
        orchestrator._cancelled = store.is_cancel_requested(orchestrator.user_id)
        orchestrator._run_id = store.get_run_id(orchestrator.user_id)
        return orchestrator

    # =========================================================================
    # Read side
    # =========================================================================

    def progress(self) -> GenerationProgress:
        return replace(self._progress)

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self, request: Union[PlanRequest, Dict[str, Any]]) -> GenerationProgress:
        """
        Begin a new run at INITIALIZE.

        Raises:
            GenerationConflictError: a run is already active for this user
        """
        if self._progress.status is GenerationStatus.RUNNING:
            raise GenerationConflictError(f"Plan generation already in progress for user {self.user_id}")

        raw = request.to_dict() if isinstance(request, PlanRequest) else dict(request or {})
        progress = GenerationProgress(
            current_step=GenerationStage.INITIALIZE,
            step_message=GenerationStage.INITIALIZE.description,
            estimated_time_remaining_seconds=GenerationStage.INITIALIZE.estimate_seconds,
            is_generating=True,
            status=GenerationStatus.RUNNING,
        )
        progress.touch()
        run_id = uuid.uuid4().hex
        if self.store is not None:
            self.store.begin_run(self.user_id, progress, raw, run_id=run_id)

        self._run_id = run_id
        self._raw_request = raw
        self.results.clear()
        self._cancelled = False
        self._progress = progress
        logger.info(f"🚀 Plan generation started for user {self.user_id}")
        return self.progress()

    async def advance(self) -> GenerationProgress:
        """
        Do the work of the current stage and move on to the next one.

        A failure leaves ``current_step`` where it is with status ``error``.
        A cancel or reset seen before or after the work discards the stage
        result.
        """
        if self._progress.status is not GenerationStatus.RUNNING:
            raise GenerationStateError(
                f"Cannot advance plan generation in status '{self._progress.status.value}'")

        stage = self._progress.current_step
        run_id = self._run_id
        if self._superseded(run_id):
            self._drop_superseded(stage)
            return self.progress()
        if self._cancel_requested():
            self._mark_cancelled()
            return self.progress()

        logger.info(f"[Step {int(stage)}/{self._progress.total_steps}] {stage.description}")
        started = time.time()
        try:
            payload = await self._run_stage(stage)
        except Exception as e:
            if self._superseded(run_id):
                self._drop_superseded(stage)
            elif self._cancel_requested():
                self._mark_cancelled()
            else:
                self._fail(stage, e)
            return self.progress()

        if self._superseded(run_id):
            self._drop_superseded(stage)
            return self.progress()

        if self._cancel_requested():
            logger.info(f"🛑 Discarding {stage.name} result, run was cancelled")
            self._mark_cancelled()
            return self.progress()

        try:
            applied = self._apply(stage, payload)
        except Exception as e:
            self._fail(stage, e)
            return self.progress()

        if applied:
            logger.info(f"   ✅ {stage.name} done in {time.time() - started:.1f}s")
        return self.progress()

    async def run_to_completion(self) -> GenerationProgress:
        """Advance until the run completes, fails or is cancelled."""
        while self._progress.status is GenerationStatus.RUNNING:
            await self.advance()
        return self.progress()

    async def run(self, request: Union[PlanRequest, Dict[str, Any]]) -> GenerationProgress:
        self.start(request)
        return await self.run_to_completion()

    def resume(self) -> GenerationProgress:
        """
        Continue a failed run from the stage that failed.

        Raises:
            GenerationStateError: the run is not in ``error``
        """
        if self._progress.status is not GenerationStatus.ERROR:
            raise GenerationStateError(
                f"Only a failed plan generation can be continued (status '{self._progress.status.value}')")

        stage = self._progress.current_step
        self._progress.error = None
        self._progress.status = GenerationStatus.RUNNING
        self._progress.is_generating = True
        self._progress.step_message = stage.description
        self._progress.estimated_time_remaining_seconds = stage.estimate_seconds
        self._persist()
        logger.info(f"🔄 Resuming plan generation for user {self.user_id} at {stage.name}")
        return self.progress()

    def cancel(self) -> bool:
        """Cancel a started, unfinished run. Returns False when there is nothing to cancel."""
        status = self._progress.status
        if self._progress.is_terminal or status is GenerationStatus.IDLE:
            logger.info(f"Nothing to cancel for user {self.user_id} (status '{status.value}')")
            return False
        if self.store is not None and not self.store.request_cancel(self.user_id):
            self._sync_from_store()
            return False
        self._cancelled = True
        self._mark_cancelled(persist=False)
        return True

    def reset(self, is_admin: bool) -> bool:
        """
        Put the user's progress back to INITIALIZE and drop all results.

        Only admins may reset; anyone else gets False and nothing changes.
        """
        if not is_admin:
            logger.warning(f"⚠️  Non-admin reset attempt for user {self.user_id} ignored")
            return False

        self._progress = GenerationProgress()
        self._progress.touch()
        self.results.clear()
        self._raw_request = None
        self._cancelled = False
        # Any advance() still waiting on a stage now belongs to a dead run
        self._run_id = None
        if self.store is not None:
            self.store.delete_progress(self.user_id)
            self.store.save_progress(self.user_id, self._progress)
        logger.info(f"🔄 Plan generation reset for user {self.user_id}")
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _cancel_requested(self) -> bool:
        if self._cancelled:
            return True
        if self.store is not None and self.store.is_cancel_requested(self.user_id):
            self._cancelled = True
        return self._cancelled

    def _superseded(self, run_id: Optional[str]) -> bool:
        """True once a reset or a newer start has replaced the run ``run_id``."""
        if run_id != self._run_id:
            return True
        if self.store is not None and run_id is not None:
            return self.store.get_run_id(self.user_id) != run_id
        return False

    def _drop_superseded(self, stage: GenerationStage) -> None:
        logger.info(f"🔄 Plan generation for user {self.user_id} was reset, dropping {stage.name}")
        self._sync_from_store()

    def _sync_from_store(self) -> None:
        """Adopt the stored snapshot after the store refused one of our writes."""
        if self.store is None:
            return
        if self._run_id is not None and self.store.get_run_id(self.user_id) != self._run_id:
            self.results.clear()
        elif self.store.is_cancel_requested(self.user_id):
            self._cancelled = True
        self._progress = self.store.get_progress(self.user_id) or GenerationProgress()

    def _mark_cancelled(self, persist: bool = True) -> None:
        self._progress.status = GenerationStatus.CANCELLED
        self._progress.is_generating = False
        self._progress.step_message = CANCELLED_MESSAGE
        self._progress.estimated_time_remaining_seconds = 0
        if persist:
            self._persist()
        else:
            self._progress.touch()

    def _fail(self, stage: GenerationStage, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        logger.error(f"❌ {stage.name} failed for user {self.user_id}: {message}")
        self._progress.error = message
        self._progress.status = GenerationStatus.ERROR
        self._progress.is_generating = False
        self._progress.estimated_time_remaining_seconds = 0
        self._persist()

    def _persist(self) -> bool:
        return self._commit(self._progress)

    def _commit(self, progress: GenerationProgress) -> bool:
        """
        Make ``progress`` the current snapshot, writing it through to the store.

        A write the store refuses (cancelled or replaced run) leaves the
        stored snapshot in charge and returns False.
        """
        progress.touch()
        if self.store is not None and not self.store.save_progress(self.user_id, progress, run_id=self._run_id):
            logger.warning(f"⚠️  Stored plan generation for user {self.user_id} moved on, not overwriting it")
            self._sync_from_store()
            return False
        self._progress = progress
        return True

    def _require(self, stage: GenerationStage) -> Any:
        payload = self.results.get(stage)
        if payload is None:
            raise GenerationStateError(f"Missing {stage.name} output")
        return payload

    async def _run_stage(self, stage: GenerationStage) -> Any:
        if stage is GenerationStage.INITIALIZE:
            is_valid, errors = validate_plan_request(self._raw_request)
            if not is_valid:
                raise PlanGenerationError(f"Invalid plan request: {'; '.join(errors)}")
            return PlanRequest.from_dict(self._raw_request)

        request = self._require(GenerationStage.INITIALIZE)

        if stage is GenerationStage.NUTRITION_CALCULATION:
            return calculate_nutrition_targets(request)

        if stage is GenerationStage.WORKOUT_PLAN:
            return await self.generator.generate_workout_plan(request)

        if stage is GenerationStage.MEAL_PLAN:
            nutrition = self._require(GenerationStage.NUTRITION_CALCULATION)
            return await self.generator.generate_meal_plan(request, nutrition)

        if stage is GenerationStage.EXTRACT_INGREDIENTS:
            meal_plan = self._require(GenerationStage.MEAL_PLAN)
            return await self.extractor.extract_for_plan(
                meal_plan, should_continue=lambda: not self._cancel_requested())

        if stage is GenerationStage.SHOPPING_LIST:
            ingredients = self._require(GenerationStage.EXTRACT_INGREDIENTS)
            return generate_shopping_list(ingredients, budget=request.weekly_budget)

        raise GenerationStateError(f"No work defined for {stage.name}")

    def _apply(self, stage: GenerationStage, payload: Any) -> bool:
        """Record the stage output and step forward. False when the store refused the step."""
        self.results.set(stage, payload)
        next_stage = stage.next()
        progress = replace(self._progress, current_step=next_stage, step_message=next_stage.description)
        if next_stage is GenerationStage.COMPLETE:
            self.results.summary = create_plan_summary(
                self.results.request, self.results.nutrition, self.results.shopping_list)
            progress.is_complete = True
            progress.is_generating = False
            progress.status = GenerationStatus.COMPLETE
            progress.estimated_time_remaining_seconds = 0
        else:
            progress.estimated_time_remaining_seconds = next_stage.estimate_seconds

        if not self._commit(progress):
            self.results.discard(stage)
            return False

        if self.store is not None:
            self.store.save_stage_output(self.user_id, stage.name, self.results.serialize(stage),
                                         run_id=self._run_id)
        if next_stage is GenerationStage.COMPLETE:
            self._finalize()
        return True

    def _finalize(self) -> None:
        if self.store is not None:
            self.results.plan_id = self.store.save_plan(
                self.user_id, self.results.final_plan(), self.results.summary)
        logger.info(f"🎉 Plan generation complete for user {self.user_id}")


# =============================================================================
# CLI
# =============================================================================

def load_profile(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def main() -> int:
    from config import STORE_CONFIG
    from plan_store import PlanStore
    from tools.progress_ui import PlanProgressUI

    parser = argparse.ArgumentParser(
        description="AI-powered fitness and meal plan generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python orchestrator.py --profile profile.json
  python orchestrator.py --profile profile.json --user-id 42
  python orchestrator.py --profile profile.json --no-persist
        """
    )
    parser.add_argument(
        "--profile",
        required=True,
        help="JSON file with the plan request (fitnessGoal, workoutDaysPerWeek, ...)"
    )
    parser.add_argument(
        "--user-id",
        default="cli",
        help="User id to generate the plan for (default: cli)"
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep progress and the plan in memory only"
    )
    args = parser.parse_args()

    request = load_profile(args.profile)
    is_valid, errors = validate_plan_request(request)
    ui = PlanProgressUI()
    if not is_valid:
        ui.show_validation_errors(errors)
        return 2

    store = None if args.no_persist else PlanStore(STORE_CONFIG["plans_db"])
    orchestrator = PlanOrchestrator(args.user_id, store=store)

    ui.show_header(args.user_id)
    with ui.create_timer("Plan generation"):
        orchestrator.start(request)
        with ui.track() as tracker:
            while orchestrator.progress().status is GenerationStatus.RUNNING:
                tracker.update(orchestrator.progress())
                await orchestrator.advance()
            tracker.update(orchestrator.progress())

    final = orchestrator.progress()
    if final.status is GenerationStatus.COMPLETE:
        ui.show_summary(orchestrator.results.summary, orchestrator.results.shopping_list)
        return 0
    ui.show_failure(final)
    return 1


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\n\n⚠️  Operation cancelled by user")
        sys.exit(130)

    except Exception as e:
        print("\n" + "═" * 60)
        print("❌ UNEXPECTED ERROR")
        print("═" * 60)
        print(f"\n{str(e)}\n")

        import traceback
        print("Full traceback:")
        traceback.print_exc()

        sys.exit(1)
