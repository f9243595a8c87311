#!/usr/bin/env python3
"""
Plan Generator
==============

The AI-backed stages of a plan generation run:
- WORKOUT_PLAN: weekly workout schedule
- MEAL_PLAN: weekly meal plan sized to the nutrition targets

Plus request validation and the final plan summary.

Both generators make ONE chat call each. A failed call or a response with
the wrong shape raises PlanGenerationError; the orchestrator records it as
a stage failure and waits for the user to Continue.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from config import get_config_value
from prompts import (
    MEAL_PLAN_SYSTEM_PROMPT,
    WORKOUT_SYSTEM_PROMPT,
    build_meal_plan_prompt,
    build_workout_prompt,
)
from tools.logging_utils import get_logger

logger = get_logger(__name__)

FITNESS_GOALS = {"weightLoss", "muscleBuild", "strength", "stamina", "generalFitness"}
FITNESS_LEVELS = {"beginner", "intermediate", "advanced"}
ACTIVITY_LEVELS = {"sedentary", "light", "moderate", "very_active", "extra_active"}

# Request keys accepted from API payloads (camelCase) -> PlanRequest fields
_FIELD_ALIASES = {
    "fitnessGoal": "fitness_goal",
    "workoutDaysPerWeek": "workout_days_per_week",
    "workoutDuration": "workout_duration",
    "fitnessLevel": "fitness_level",
    "activityLevel": "activity_level",
    "weeklyBudget": "weekly_budget",
    "budgetCurrency": "budget_currency",
    "dietPreferences": "diet_preferences",
    "heightCm": "height_cm",
    "height": "height_cm",
    "weightKg": "weight_kg",
    "weight": "weight_kg",
    "gender": "sex",
}


class PlanGenerationError(RuntimeError):
    """A plan stage could not produce its output."""


@dataclass
class PlanRequest:
    fitness_goal: str
    workout_days_per_week: int
    workout_duration: int
    fitness_level: str
    activity_level: str
    weekly_budget: float
    budget_currency: str = "GBP"
    diet_preferences: List[str] = field(default_factory=list)
    restrictions: List[str] = field(default_factory=list)
    age: Optional[int] = None
    sex: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanRequest":
        """Build from snake_case or camelCase keys; unknown keys are ignored."""
        normalized = _normalize_keys(data)
        known = {k: v for k, v in normalized.items() if k in cls.__dataclass_fields__}
        known.setdefault("budget_currency", get_config_value("generation", "default_currency", "GBP"))
        known["workout_days_per_week"] = int(known["workout_days_per_week"])
        known["workout_duration"] = int(known["workout_duration"])
        known["weekly_budget"] = float(known["weekly_budget"])
        known["diet_preferences"] = list(known.get("diet_preferences") or [])
        known["restrictions"] = list(known.get("restrictions") or [])
        return cls(**known)


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_FIELD_ALIASES.get(k, k): v for k, v in (data or {}).items()}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def validate_plan_request(data: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate a plan generation request payload.

    Validation rules:
    - fitness goal, fitness level and activity level must be known values
    - workout days per week between 1 and 7
    - workout duration and weekly budget must be positive numbers
    - diet preferences and restrictions, when given, must be lists

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []
    if not isinstance(data, dict):
        return False, ["Request body must be a JSON object"]
    values = _normalize_keys(data)

    goal = values.get("fitness_goal")
    if not goal:
        errors.append("fitnessGoal is required")
    elif goal not in FITNESS_GOALS:
        errors.append(f"fitnessGoal must be one of {sorted(FITNESS_GOALS)}")

    days = values.get("workout_days_per_week")
    if not _is_number(days) or not float(days).is_integer() or not 1 <= int(float(days)) <= 7:
        errors.append("workoutDaysPerWeek must be a whole number between 1 and 7")

    duration = values.get("workout_duration")
    if not _is_number(duration) or float(duration) <= 0:
        errors.append("workoutDuration must be a positive number of minutes")

    budget = values.get("weekly_budget")
    if not _is_number(budget) or float(budget) <= 0:
        errors.append("weeklyBudget must be a positive number")

    level = values.get("fitness_level")
    if level not in FITNESS_LEVELS:
        errors.append(f"fitnessLevel must be one of {sorted(FITNESS_LEVELS)}")

    activity = values.get("activity_level")
    if activity not in ACTIVITY_LEVELS:
        errors.append(f"activityLevel must be one of {sorted(ACTIVITY_LEVELS)}")

    for key, label in (("diet_preferences", "dietPreferences"), ("restrictions", "restrictions")):
        if values.get(key) is not None and not isinstance(values[key], list):
            errors.append(f"{label} must be a list")

    for key, label in (("age", "age"), ("height_cm", "height"), ("weight_kg", "weight")):
        value = values.get(key)
        if value is not None and (not _is_number(value) or float(value) <= 0):
            errors.append(f"{label} must be a positive number")

    return len(errors) == 0, errors


def _require_mapping(data: Dict[str, Any], key: str, label: str) -> Dict[str, Any]:
    section = data.get(key)
    if not isinstance(section, dict) or not section:
        raise PlanGenerationError(f"Failed to generate {label}: response has no '{key}'")
    return section


class PlanGenerator:
    """Runs the workout and meal plan prompts against the chat API."""

    def __init__(self, llm):
        self.llm = llm

    async def generate_workout_plan(self, request: PlanRequest) -> Dict[str, Any]:
        try:
            data = await self.llm.complete_json(
                WORKOUT_SYSTEM_PROMPT, build_workout_prompt(request), temperature=0.7)
        except Exception as e:
            logger.error(f"❌ Workout plan generation failed: {e}")
            raise PlanGenerationError(f"Failed to generate workout plan: {e}") from e

        schedule = _require_mapping(data, "weeklySchedule", "workout plan")
        logger.info(f"✅ Workout plan generated ({len(schedule)} days)")
        return {"weeklySchedule": schedule, "notes": data.get("notes", "")}

    async def generate_meal_plan(self, request: PlanRequest, nutrition) -> Dict[str, Any]:
        try:
            data = await self.llm.complete_json(
                MEAL_PLAN_SYSTEM_PROMPT, build_meal_plan_prompt(request, nutrition), temperature=0.7)
        except Exception as e:
            logger.error(f"❌ Meal plan generation failed: {e}")
            raise PlanGenerationError(f"Failed to generate meal plan: {e}") from e

        meals = _require_mapping(data, "weeklyMeals", "meal plan")
        logger.info(f"✅ Meal plan generated ({len(meals)} days)")
        return {"weeklyMeals": meals, "notes": data.get("notes", "")}


def create_plan_summary(request: PlanRequest, nutrition, shopping_list) -> Dict[str, Any]:
    """
    Summary shown with a finished plan.

    ``shopping_list`` is a shopping_list.ShoppingList.
    """
    diet_type = ", ".join(request.diet_preferences) if request.diet_preferences else "Balanced"
    adaptations = [f"Adapted for {pref} diet" for pref in request.diet_preferences]
    adaptations += [f"Excludes {item}" for item in request.restrictions]
    if shopping_list.total_cost > request.weekly_budget * 0.9:
        adaptations.append("Optimized for budget constraints")

    return {
        "fitnessGoal": request.fitness_goal,
        "weeklyWorkouts": request.workout_days_per_week,
        "dailyCalories": nutrition.calories,
        "weeklyCost": shopping_list.total_cost,
        "budgetCurrency": request.budget_currency,
        "dietType": diet_type,
        "adaptations": adaptations,
    }
