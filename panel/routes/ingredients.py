"""Ingredient routes - one-off extraction for a meal or a whole meal plan."""
from flask import Blueprint, jsonify, request
import asyncio

from ingredient_extractor import IngredientExtractor
from llm_client import LLMClient
from shopping_list import generate_shopping_list
from tools.logging_utils import get_logger

logger = get_logger(__name__)

bp = Blueprint('ingredients', __name__)


def _build_extractor() -> IngredientExtractor:
    return IngredientExtractor(LLMClient())


@bp.route('/extract', methods=['POST'])
def extract_meal():
    """Ingredients for one meal (AI with retries, fallback parser otherwise)."""
    body = request.get_json(silent=True) or {}
    meal_name = str(body.get('mealName') or '').strip()
    if not meal_name:
        return jsonify({'error': 'mealName is required'}), 400

    result = asyncio.run(_build_extractor().extract_for_meal(
        meal_name, str(body.get('mealDescription') or '')))
    return jsonify(result.to_dict())


@bp.route('/meal-plan-extract', methods=['POST'])
def extract_meal_plan():
    """Ingredients for a weekly meal plan plus the shopping list built from them."""
    body = request.get_json(silent=True) or {}
    meal_plan = body.get('mealPlan')
    if not isinstance(meal_plan, dict) or not meal_plan:
        return jsonify({'error': 'mealPlan must be a non-empty object'}), 400

    budget = body.get('budget')
    if budget is not None:
        try:
            budget = float(budget)
        except (TypeError, ValueError):
            return jsonify({'error': 'budget must be a number'}), 400

    ingredients = asyncio.run(_build_extractor().extract_for_plan(meal_plan))
    shopping_list = generate_shopping_list(ingredients, budget=budget)
    logger.info(f"📊 Meal plan extraction: {ingredients.total_count} ingredients")
    return jsonify({
        'ingredients': ingredients.to_dict(),
        'shoppingList': shopping_list.to_dict(),
    })
