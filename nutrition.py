"""
Nutrition Targets
=================

Daily calorie and macro targets for the NUTRITION_CALCULATION stage:
Mifflin-St Jeor BMR, an activity multiplier for TDEE, a goal adjustment,
then a goal-specific macro split.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

DEFAULT_WEIGHT_KG = 70.0
DEFAULT_HEIGHT_CM = 170.0
DEFAULT_AGE = 30

ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "very_active": 1.725,
    "extra_active": 1.9,
}
DEFAULT_ACTIVITY_MULTIPLIER = 1.375

GOAL_CALORIE_FACTORS = {
    "weightLoss": 0.8,   # 20% deficit
    "muscleBuild": 1.1,  # 10% surplus
}

# (protein, carbs, fat) share of calories
MACRO_RATIOS = {
    "weightLoss": (0.40, 0.25, 0.35),
    "muscleBuild": (0.30, 0.45, 0.25),
    "strength": (0.30, 0.40, 0.30),
}
DEFAULT_MACRO_RATIO = (0.25, 0.50, 0.25)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class NutritionTargets:
    calories: int
    protein_g: int
    carbs_g: int
    fat_g: int
    bmr: int
    tdee: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NutritionTargets":
        return cls(**{k: int(data[k]) for k in cls.__dataclass_fields__})


def calculate_bmr(weight_kg: Optional[float], height_cm: Optional[float],
                  age: Optional[int], sex: Optional[str]) -> float:
    weight = weight_kg or DEFAULT_WEIGHT_KG
    height = height_cm or DEFAULT_HEIGHT_CM
    years = age or DEFAULT_AGE
    base = 10 * weight + 6.25 * height - 5 * years
    if (sex or "").strip().lower() in ("male", "m"):
        return base + 5
    return base - 161


def calculate_tdee(bmr: float, activity_level: Optional[str]) -> int:
    multiplier = ACTIVITY_MULTIPLIERS.get(activity_level or "", DEFAULT_ACTIVITY_MULTIPLIER)
    return _round_half_up(bmr * multiplier)


def adjust_calories_for_goal(tdee: int, fitness_goal: Optional[str]) -> int:
    factor = GOAL_CALORIE_FACTORS.get(fitness_goal or "")
    if factor is None:
        return tdee
    return _round_half_up(tdee * factor)


def calculate_macros(calories: int, fitness_goal: Optional[str]) -> Dict[str, int]:
    protein, carbs, fat = MACRO_RATIOS.get(fitness_goal or "", DEFAULT_MACRO_RATIO)
    return {
        "protein_g": _round_half_up(calories * protein / 4),
        "carbs_g": _round_half_up(calories * carbs / 4),
        "fat_g": _round_half_up(calories * fat / 9),
    }


def calculate_nutrition_targets(request) -> NutritionTargets:
    """Targets for a plan_generator.PlanRequest."""
    bmr = calculate_bmr(request.weight_kg, request.height_cm, request.age, request.sex)
    tdee = calculate_tdee(bmr, request.activity_level)
    calories = adjust_calories_for_goal(tdee, request.fitness_goal)
    macros = calculate_macros(calories, request.fitness_goal)
    return NutritionTargets(
        calories=calories,
        bmr=_round_half_up(bmr),
        tdee=tdee,
        **macros,
    )
