#!/usr/bin/env python3
"""
Ingredient Extraction Client
============================

Turns free-text meal descriptions, single days of a meal plan, or a whole
weekly meal plan into categorized ingredient lists using the chat API.

Failure handling:
- Single meals retry on ANY error (1s, 2s, 4s backoff), then fall back to a
  deterministic local parser. Never raises.
- Days retry ONLY on rate limits (5s, 10s, 20s backoff). Any other error
  returns an empty list with ``error`` set, so the caller can skip the day.
- Whole plans are processed one day at a time with a fixed pause between
  days. Day errors are collected in an error trail; the aggregate is always
  returned.

Usage:
    from ingredient_extractor import IngredientExtractor

    extractor = IngredientExtractor(LLMClient())
    ingredients = await extractor.extract_for_plan(meal_plan)
    print(ingredients.total_count, ingredients.error)
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from config import get_config_value
from llm_client import LLMResponseError, is_rate_limit_error
from prompts import (
    DAY_EXTRACTION_SYSTEM_PROMPT,
    MEAL_EXTRACTION_SYSTEM_PROMPT,
    build_day_extraction_prompt,
    build_meal_extraction_prompt,
)
from tools.logging_utils import get_logger

logger = get_logger(__name__)

Quantity = Union[str, int, float]


# =============================================================================
# DATA MODEL
# =============================================================================

class IngredientCategory(str, Enum):
    PRODUCE = "Produce"
    PROTEIN = "Protein"
    DAIRY = "Dairy"
    GRAINS = "Grains"
    OTHER = "Other"

    @property
    def key(self) -> str:
        """Lower-case key used in JSON payloads."""
        return self.value.lower()


# Keyword tables, checked in this order; first hit wins.
CATEGORY_KEYWORDS = {
    IngredientCategory.PRODUCE: [
        'apple', 'banana', 'berry', 'broccoli', 'carrot', 'celery', 'cucumber',
        'fruit', 'garlic', 'ginger', 'lemon', 'lettuce', 'onion', 'pepper',
        'potato', 'spinach', 'tomato', 'vegetable', 'avocado',
    ],
    IngredientCategory.PROTEIN: [
        'beef', 'chicken', 'fish', 'meat', 'pork', 'salmon', 'tuna', 'turkey',
        'tofu', 'tempeh', 'sausage', 'steak', 'shrimp', 'protein',
    ],
    IngredientCategory.DAIRY: [
        'butter', 'cheese', 'cream', 'milk', 'yogurt', 'dairy', 'egg',
    ],
    IngredientCategory.GRAINS: [
        'bread', 'cereal', 'flour', 'grain', 'oat', 'pasta', 'rice',
        'wheat', 'quinoa', 'bun', 'roll', 'cracker', 'tortilla',
    ],
}

# Category names the model uses, mapped onto our five categories
CATEGORY_ALIASES = {
    "produce": IngredientCategory.PRODUCE,
    "vegetables": IngredientCategory.PRODUCE,
    "vegetable": IngredientCategory.PRODUCE,
    "fruits": IngredientCategory.PRODUCE,
    "fruit": IngredientCategory.PRODUCE,
    "fruits & vegetables": IngredientCategory.PRODUCE,
    "protein": IngredientCategory.PROTEIN,
    "proteins": IngredientCategory.PROTEIN,
    "meat": IngredientCategory.PROTEIN,
    "meats": IngredientCategory.PROTEIN,
    "seafood": IngredientCategory.PROTEIN,
    "poultry": IngredientCategory.PROTEIN,
    "meat & seafood": IngredientCategory.PROTEIN,
    "dairy": IngredientCategory.DAIRY,
    "dairy & eggs": IngredientCategory.DAIRY,
    "eggs": IngredientCategory.DAIRY,
    "grains": IngredientCategory.GRAINS,
    "grain": IngredientCategory.GRAINS,
    "grains & bread": IngredientCategory.GRAINS,
    "bread": IngredientCategory.GRAINS,
    "carbs": IngredientCategory.GRAINS,
    "other": IngredientCategory.OTHER,
}


def normalize_category(value: Any) -> Optional[IngredientCategory]:
    """Map a category label from a payload onto IngredientCategory, or None."""
    if isinstance(value, IngredientCategory):
        return value
    if not isinstance(value, str):
        return None
    return CATEGORY_ALIASES.get(value.strip().lower())


def categorize_ingredient(name: str) -> IngredientCategory:
    """Keyword-match an ingredient name; unmatched names are Other."""
    lowered = (name or "").lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return IngredientCategory.OTHER


def coerce_quantity(value: Any) -> Quantity:
    """'2' -> 2, '1.5' -> 1.5; anything non-numeric is kept as given."""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip() if value is not None else ""
    if not text:
        return ""
    try:
        number = float(text)
    except ValueError:
        return text
    return int(number) if number.is_integer() else number


@dataclass
class IngredientRecord:
    name: str
    quantity: Quantity
    unit: str
    category: IngredientCategory
    optional: bool = False
    estimated_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "category": self.category.value,
        }
        if self.optional:
            data["optional"] = True
        if self.estimated_price is not None:
            data["estimated_price"] = self.estimated_price
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  category: Optional[IngredientCategory] = None) -> Optional["IngredientRecord"]:
        """
        Build a record from a payload entry.

        ``category`` (from the enclosing list) wins over the entry's own
        category field; with neither, the name is keyword-matched.
        Returns None for entries without a usable name.
        """
        name = str(data.get("name") or data.get("ingredient") or data.get("item") or "").strip()
        if not name:
            return None
        resolved = category or normalize_category(data.get("category")) or categorize_ingredient(name)
        price = data.get("estimated_price", data.get("price"))
        try:
            price = float(price) if price is not None else None
        except (TypeError, ValueError):
            price = None
        return cls(
            name=name,
            quantity=coerce_quantity(data.get("quantity", data.get("amount", ""))),
            unit=str(data.get("unit") or ""),
            category=resolved,
            optional=bool(data.get("optional", False)),
            estimated_price=price,
        )


def _empty_categories() -> Dict[IngredientCategory, List[IngredientRecord]]:
    return {category: [] for category in IngredientCategory}


@dataclass
class CategorizedIngredientList:
    """
    Ingredients grouped by category.

    ``total_count`` is derived from the lists on every read, so it can never
    drift from their lengths. ``error`` is the soft failure marker callers
    inspect; ``errors`` keeps the individual messages when several units
    (days) failed.
    """
    categories: Dict[IngredientCategory, List[IngredientRecord]] = field(default_factory=_empty_categories)
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    meal_name: Optional[str] = None

    @property
    def total_count(self) -> int:
        return sum(len(items) for items in self.categories.values())

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "CategorizedIngredientList":
        result = cls()
        if error:
            result.record_error(error)
        return result

    def add(self, record: IngredientRecord) -> None:
        self.categories.setdefault(record.category, []).append(record)

    def items(self) -> List[IngredientRecord]:
        """All records in category order."""
        return [record for category in IngredientCategory
                for record in self.categories.get(category, [])]

    def record_error(self, message: str) -> None:
        self.errors.append(message)
        self.error = "; ".join(self.errors)

    def merge(self, other: "CategorizedIngredientList") -> None:
        """Append another list category by category, keeping its errors."""
        for category, records in other.categories.items():
            self.categories.setdefault(category, []).extend(records)
        for message in other.errors:
            self.record_error(message)
        if other.error and not other.errors:
            self.record_error(other.error)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "categories": {
                category.key: [record.to_dict() for record in self.categories.get(category, [])]
                for category in IngredientCategory
            },
            "totalCount": self.total_count,
            "error": self.error,
        }
        if self.errors:
            data["errors"] = list(self.errors)
        if self.meal_name:
            data["mealName"] = self.meal_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategorizedIngredientList":
        result = parse_extraction_payload(data)
        result.meal_name = data.get("mealName")
        for message in data.get("errors") or []:
            result.record_error(message)
        if data.get("error") and not result.errors:
            result.record_error(data["error"])
        return result


@dataclass
class ExtractionAttempt:
    """Retry bookkeeping for one extraction call."""
    retry_count: int = 0
    last_error: Optional[BaseException] = None

    def record_failure(self, error: BaseException) -> None:
        self.retry_count += 1
        self.last_error = error

    @property
    def calls_made(self) -> int:
        return self.retry_count

    def backoff_seconds(self, base: float) -> float:
        """Delay before the next call: base, 2*base, 4*base, ..."""
        return base * (2 ** max(self.retry_count - 1, 0))


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

def _records_from_list(items: Any, category: Optional[IngredientCategory]) -> List[IngredientRecord]:
    records = []
    if not isinstance(items, list):
        return records
    for item in items:
        if isinstance(item, dict):
            record = IngredientRecord.from_dict(item, category)
        elif isinstance(item, str) and item.strip():
            record = IngredientRecord(
                name=item.strip(), quantity="as needed", unit="",
                category=category or categorize_ingredient(item),
            )
        else:
            record = None
        if record:
            records.append(record)
    return records


def parse_extraction_payload(data: Dict[str, Any]) -> CategorizedIngredientList:
    """
    Convert a model response into a CategorizedIngredientList.

    Accepted shapes:
        {"categories": {"produce": [...], ...}}
        {"ingredients": [{"name": ..., "category": ...}, ...]}
        {"produce": [...], "protein": [...], ...}

    Raises:
        LLMResponseError: none of the shapes matched
    """
    result = CategorizedIngredientList()

    if isinstance(data.get("categories"), dict):
        for key, items in data["categories"].items():
            for record in _records_from_list(items, normalize_category(key)):
                result.add(record)
        return result

    if isinstance(data.get("ingredients"), list):
        for record in _records_from_list(data["ingredients"], None):
            result.add(record)
        return result

    matched = False
    for key, items in data.items():
        category = normalize_category(key)
        if category and isinstance(items, list):
            matched = True
            for record in _records_from_list(items, category):
                result.add(record)
    if matched:
        return result

    raise LLMResponseError(f"Response has no ingredient data (keys: {sorted(data.keys())})")


# =============================================================================
# FALLBACK PARSER
# =============================================================================

# Units must end at a word boundary so "2 large eggs" is not read as litres
_UNIT = r'(?:g|kg|ml|l|cups?|tbsp|tsp|oz)(?![a-zA-Z])'
_INGREDIENTS_BLOCK = re.compile(r'ingredients:\s*\[(.*?)\]', re.IGNORECASE | re.DOTALL)
_LIST_ENTRY = re.compile(rf'^([\d.]+)?\s*({_UNIT})?\s*(.+)$')
_QUANTITY_UNIT_NAME = re.compile(rf'(\d+(?:\.\d+)?)\s*({_UNIT})\s+([a-zA-Z ]+)')
_NAME_SEPARATORS = re.compile(r'\s+and\s+|\s+with\s+|\s*,\s*|\s+&\s+', re.IGNORECASE)
_FILLER_WORDS = {'the', 'and', 'with'}


def _parse_ingredients_block(block: str) -> List[IngredientRecord]:
    records = []
    for raw in block.split(','):
        clean = re.sub(r'["\'\[\]]', '', raw).strip()
        if not clean:
            continue
        parts = _LIST_ENTRY.match(clean)
        if parts:
            quantity, unit, name = parts.groups()
            name = name.strip() or clean
            records.append(IngredientRecord(
                name=name,
                quantity=coerce_quantity(quantity or "1"),
                unit=unit or "",
                category=categorize_ingredient(name),
            ))
        else:
            records.append(IngredientRecord(
                name=clean, quantity="as needed", unit="",
                category=categorize_ingredient(clean),
            ))
    return records


def _scan_quantities(description: str) -> List[IngredientRecord]:
    records = []
    for match in _QUANTITY_UNIT_NAME.finditer(description):
        quantity, unit, name = match.groups()
        name = name.strip()
        if not name:
            continue
        records.append(IngredientRecord(
            name=name,
            quantity=coerce_quantity(quantity),
            unit=unit,
            category=categorize_ingredient(name),
        ))
    return records


def _split_meal_name(meal_name: str) -> List[IngredientRecord]:
    records = []
    for item in _NAME_SEPARATORS.split(meal_name or ""):
        item = item.strip()
        if len(item) > 2 and item.lower() not in _FILLER_WORDS:
            records.append(IngredientRecord(
                name=item, quantity="as needed", unit="",
                category=categorize_ingredient(item),
            ))
    return records


def parse_meal_fallback(meal_name: str, meal_description: str = "") -> CategorizedIngredientList:
    """
    Deterministic, non-AI ingredient extraction.

    Tried in order, first non-empty result wins:
    1. an explicit ``ingredients: [...]`` block in the description
    2. ``<qty> <unit> <name>`` patterns anywhere in the description
    3. the meal name split on and/with/,/&
    4. a single placeholder serving named after the meal
    """
    description = meal_description or ""
    block = _INGREDIENTS_BLOCK.search(description)
    if block:
        records = _parse_ingredients_block(block.group(1))
    else:
        records = _scan_quantities(description)

    if not records:
        records = _split_meal_name(meal_name)

    if not records:
        records = [IngredientRecord(
            name=meal_name or "Meal", quantity=1, unit="serving",
            category=IngredientCategory.OTHER,
        )]

    result = CategorizedIngredientList(meal_name=meal_name)
    for record in records:
        result.add(record)
    return result


# =============================================================================
# MEAL PLAN FORMATTING
# =============================================================================

def _simplify_meal(meal: Any, fallback_name: str) -> Optional[Dict[str, Any]]:
    if not isinstance(meal, dict):
        return None
    ingredients = meal.get("ingredients")
    has_ingredients = isinstance(ingredients, list) and len(ingredients) > 0
    description = meal.get("description")
    if not has_ingredients and not (isinstance(description, str) and description.strip()):
        return None
    simplified = {"name": meal.get("name") or fallback_name}
    if has_ingredients:
        simplified["ingredients"] = ingredients
    else:
        simplified["description"] = description
    return simplified


def format_meal_plan_for_extraction(meal_plan: Any) -> Dict[str, Dict[str, Any]]:
    """
    Reduce a weekly meal plan to {day: {meal_type: {name, ingredients}}}.

    Accepts ``{"weeklyMealPlan": {...}}``, ``{"weeklyMeals": {...}}`` or a
    bare day mapping. Meals without ingredients or a description are
    dropped, and so are days left with no meals.
    """
    if not isinstance(meal_plan, dict):
        return {}
    days = meal_plan.get("weeklyMealPlan") or meal_plan.get("weeklyMeals") or meal_plan
    if not isinstance(days, dict):
        return {}

    simplified: Dict[str, Dict[str, Any]] = {}
    for day, meals in days.items():
        if not isinstance(meals, dict):
            logger.debug(f"🔍 Skipping {day}: no meal data")
            continue
        kept: Dict[str, Any] = {}
        for meal_type, meal in meals.items():
            if isinstance(meal, list):
                snacks = [s for s in (_simplify_meal(m, f"{meal_type} item") for m in meal) if s]
                if snacks:
                    kept[meal_type] = snacks
            else:
                simple = _simplify_meal(meal, f"{meal_type} meal")
                if simple:
                    kept[meal_type] = simple
        if kept:
            simplified[day] = kept
        else:
            logger.debug(f"🔍 Skipping {day}: no meals with ingredients")
    return simplified


# =============================================================================
# EXTRACTION CLIENT
# =============================================================================

class IngredientExtractor:
    """
    Chat-API-backed ingredient extraction with retry and fallback.

    ``sleep`` is injectable so tests can record backoff delays instead of
    waiting for them.
    """

    def __init__(self, llm, sleep: Callable[[float], Awaitable[Any]] = None,
                 meal_max_retries: int = None, meal_backoff_base: float = None,
                 day_max_retries: int = None, day_backoff_base: float = None,
                 inter_day_delay: float = None):
        self.llm = llm
        self._sleep = sleep or asyncio.sleep
        self.meal_max_retries = meal_max_retries if meal_max_retries is not None \
            else get_config_value("extraction", "meal_max_retries", 3)
        self.meal_backoff_base = meal_backoff_base if meal_backoff_base is not None \
            else get_config_value("extraction", "meal_backoff_base", 1.0)
        self.day_max_retries = day_max_retries if day_max_retries is not None \
            else get_config_value("extraction", "day_max_retries", 3)
        self.day_backoff_base = day_backoff_base if day_backoff_base is not None \
            else get_config_value("extraction", "day_backoff_base", 5.0)
        self.inter_day_delay = inter_day_delay if inter_day_delay is not None \
            else get_config_value("extraction", "inter_day_delay", 5.0)

    async def extract_for_meal(self, meal_name: str, meal_description: str = "") -> CategorizedIngredientList:
        """
        Extract one meal's ingredients. Never raises.

        Any failure is retried ``meal_max_retries`` times; once those are
        used up the fallback parser answers instead.
        """
        attempt = ExtractionAttempt()
        total_calls = self.meal_max_retries + 1
        while True:
            try:
                data = await self.llm.complete_json(
                    MEAL_EXTRACTION_SYSTEM_PROMPT,
                    build_meal_extraction_prompt(meal_name, meal_description),
                )
                result = parse_extraction_payload(data)
                result.meal_name = meal_name
                logger.info(f"✅ Extracted {result.total_count} ingredients for meal: {meal_name}")
                return result
            except Exception as e:
                attempt.record_failure(e)
                logger.warning(f"⚠️  Meal extraction failed (attempt {attempt.calls_made}/{total_calls}): {e}")

            if attempt.retry_count > self.meal_max_retries:
                logger.warning(f"⚠️  All {total_calls} attempts failed for meal: {meal_name}, using fallback parser")
                result = parse_meal_fallback(meal_name, meal_description)
                result.record_error(f"AI extraction failed after {total_calls} attempts: {attempt.last_error}")
                return result

            delay = attempt.backoff_seconds(self.meal_backoff_base)
            logger.info(f"   Waiting {delay:g}s before retry {attempt.retry_count + 1}")
            await self._sleep(delay)

    async def extract_for_day(self, day_label: str, day_meals: Dict[str, Any]) -> CategorizedIngredientList:
        """
        Extract one day's ingredients. Never raises.

        Only rate-limit errors are retried. Anything else returns an empty
        list with ``error`` set straight away.
        """
        attempt = ExtractionAttempt()
        while True:
            try:
                data = await self.llm.complete_json(
                    DAY_EXTRACTION_SYSTEM_PROMPT,
                    build_day_extraction_prompt(day_label, day_meals),
                )
                result = parse_extraction_payload(data)
                logger.info(f"✅ Extracted {result.total_count} ingredients for {day_label}")
                return result
            except Exception as e:
                attempt.record_failure(e)
                rate_limited = is_rate_limit_error(e)

            if not rate_limited:
                message = f"Failed to extract ingredients for {day_label}: {attempt.last_error}"
                logger.error(f"❌ {message}")
                return CategorizedIngredientList.empty(error=message)

            if attempt.retry_count > self.day_max_retries:
                message = (f"Failed to extract ingredients for {day_label} after "
                           f"{attempt.calls_made} attempts: {attempt.last_error}")
                logger.error(f"❌ {message}")
                return CategorizedIngredientList.empty(error=message)

            delay = attempt.backoff_seconds(self.day_backoff_base)
            logger.warning(f"⚠️  Rate limit hit for {day_label}. Retrying in {delay:g}s "
                           f"(attempt {attempt.retry_count}/{self.day_max_retries})")
            await self._sleep(delay)

    async def extract_for_plan(self, weekly_meal_plan: Dict[str, Any],
                               should_continue: Callable[[], bool] = None) -> CategorizedIngredientList:
        """
        Extract and merge the ingredients of every day in a meal plan.

        Days run strictly one after another with ``inter_day_delay`` between
        them. ``should_continue`` is checked before each day; once it returns
        False no further calls are made and the partial aggregate is returned.
        """
        aggregate = CategorizedIngredientList()
        days = format_meal_plan_for_extraction(weekly_meal_plan)
        if not days:
            aggregate.record_error("No meals with ingredients found in meal plan")
            logger.warning("⚠️  No meals with ingredients found in meal plan")
            return aggregate

        logger.info(f"🚀 Extracting ingredients for {len(days)} days")
        for index, (day, meals) in enumerate(days.items()):
            if index > 0:
                await self._sleep(self.inter_day_delay)
            if should_continue is not None and not should_continue():
                logger.info(f"   Extraction stopped before {day}")
                break

            day_result = await self.extract_for_day(day, meals)
            if day_result.error:
                # Day is skipped; the rest of the week still runs
                aggregate.record_error(day_result.error)
                continue
            aggregate.merge(day_result)

        logger.info(f"📊 Plan extraction finished: {aggregate.total_count} ingredients, "
                    f"{len(aggregate.errors)} day errors")
        return aggregate
