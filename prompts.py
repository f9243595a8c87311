"""
FitPlan Prompts Configuration
=============================

This module contains all LLM prompts used by the plan generation pipeline.
Separating prompts from code makes it easier to tune and experiment
with different prompt strategies without modifying the core logic.

System prompts are plain constants. User prompts are built by the
build_*_prompt() functions from the request and earlier stage outputs.
"""

import json
from typing import Dict, Any, List


# =============================================================================
# INGREDIENT EXTRACTION
# =============================================================================

MEAL_EXTRACTION_SYSTEM_PROMPT = """You are a nutrition expert helping to extract ingredients from meal descriptions.
Parse the provided meal description and create a comprehensive, structured list of ingredients.

Follow these rules when extracting ingredients:
1. Extract the exact quantity and unit of each ingredient
2. If quantities or units are ambiguous, make a reasonable estimation
3. Group ingredients by category (produce, protein, dairy, grains, other)
4. Identify optional ingredients and mark them as such
5. Convert uncommon measurements to standard units

Return a JSON object of this shape:
{
  "categories": {
    "produce": [{"name": "string", "quantity": "string or number", "unit": "string", "optional": false}],
    "protein": [],
    "dairy": [],
    "grains": [],
    "other": []
  }
}"""

DAY_EXTRACTION_SYSTEM_PROMPT = """You are a nutrition expert helping to extract ingredients from a single day's meals.
Parse the provided meal data and create a structured, organized ingredient list.

Follow these rules when creating the ingredient list:
1. Combine duplicate ingredients and sum their quantities
2. Standardize units (e.g., convert tablespoons to cups where appropriate)
3. Group ingredients by category (produce, protein, dairy, grains, other)
4. Extract quantities and units where available
5. Sort ingredients within each category alphabetically

IMPORTANT: Return a valid JSON object with at least these fields, even if the data is incomplete:
{
  "categories": {
    "produce": [],
    "protein": [],
    "dairy": [],
    "grains": [],
    "other": []
  },
  "totalCount": 0
}"""


def build_meal_extraction_prompt(meal_name: str, meal_description: str) -> str:
    """User prompt for single-meal extraction."""
    return (
        "Here is the meal name and description. Please extract all ingredients "
        f"with quantities and units:\n\nMeal: {meal_name}\n\nDescription: {meal_description}"
    )


def build_day_extraction_prompt(day_label: str, day_meals: Dict[str, Any]) -> str:
    """User prompt for one day of the meal plan."""
    return (
        f"Here are the meals for {day_label}. Please extract and organize all "
        f"ingredients:\n\n{json.dumps(day_meals, indent=2)}"
    )


# =============================================================================
# PLAN GENERATION
# =============================================================================

WORKOUT_SYSTEM_PROMPT = "You are a certified personal trainer and exercise specialist."

MEAL_PLAN_SYSTEM_PROMPT = "You are a certified nutritionist and meal planning specialist."


def _join(values: List[str], empty: str = "None") -> str:
    return ", ".join(values) if values else empty


def _profile_lines(request) -> str:
    return (
        f"- Age: {request.age or 'Not specified'}\n"
        f"- Height: {request.height_cm or 'Not specified'} cm\n"
        f"- Weight: {request.weight_kg or 'Not specified'} kg"
    )


def build_workout_prompt(request) -> str:
    """
    Workout plan prompt.

    Required: a PlanRequest (plan_generator.PlanRequest).
    """
    return f"""
Create a detailed weekly workout plan for a {request.sex or 'person'} with the following parameters:
{_profile_lines(request)}
- Fitness goal: {request.fitness_goal}
- Fitness level: {request.fitness_level}
- Workout days per week: {request.workout_days_per_week}
- Maximum workout duration: {request.workout_duration} minutes
- Activity level: {request.activity_level}

Format requirements:
1. The workouts should follow a logical progression with appropriate rest days
2. Each workout should have a name, type, target muscle groups, and a list of exercises
3. Each exercise should include sets, reps, rest periods, and any required equipment
4. Include warm-up and cool-down recommendations
5. Response must be valid JSON matching this format:
{{
  "weeklySchedule": {{
    "monday": {{
      "name": "string",
      "workoutType": "string",
      "targetMuscleGroups": ["string"],
      "exercises": [
        {{"name": "string", "sets": 3, "reps": 10, "rest": 60, "notes": "string"}}
      ],
      "duration": 45,
      "caloriesBurned": 300
    }}
  }},
  "notes": "string with general advice"
}}"""


def build_meal_plan_prompt(request, nutrition) -> str:
    """
    Meal plan prompt.

    Required: a PlanRequest and the NutritionTargets from the nutrition stage.
    """
    return f"""
Create a detailed weekly meal plan for a {request.sex or 'person'} with the following parameters:
{_profile_lines(request)}
- Daily calorie target: {nutrition.calories} calories
- Protein target: {nutrition.protein_g}g
- Carbs target: {nutrition.carbs_g}g
- Fat target: {nutrition.fat_g}g
- Dietary preferences: {_join(request.diet_preferences)}
- Dietary restrictions: {_join(request.restrictions)}
- Weekly budget: {request.weekly_budget} {request.budget_currency}

Format requirements:
1. Plan must include breakfast, lunch, dinner, and snacks for each day
2. Each meal must include name, description, ingredients with quantities, and nutritional information
3. Meals should be varied but utilize common ingredients to minimize waste and maximize the budget
4. Use realistic portion sizes based on common packaging (e.g., full eggs, not 1.3 eggs)
5. Response must be valid JSON matching this format:
{{
  "weeklyMeals": {{
    "monday": {{
      "breakfast": {{
        "name": "string",
        "description": "string",
        "ingredients": [{{"name": "string", "quantity": "string", "unit": "string"}}],
        "calories": 500, "protein": 30, "carbs": 50, "fat": 15, "cost": 2.5
      }},
      "lunch": {{}},
      "dinner": {{}},
      "snacks": [{{}}]
    }}
  }},
  "notes": "string with general advice"
}}"""
