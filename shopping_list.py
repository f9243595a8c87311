"""
Shopping List Builder

Turns an extracted CategorizedIngredientList into a shopping list grouped by
store section, for the SHOPPING_LIST stage.

Duplicate ingredients (same normalized name) are aggregated using documented
unit conversions. Conservative approach: quantities we cannot convert are
kept as separate lines rather than guessed at.

Sources:
- Weight/volume tables: US customary measures
- Item weights: USDA National Nutrient Database SR28
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ingredient_extractor import CategorizedIngredientList, IngredientRecord
from tools.logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# STORE SECTIONS
# ============================================================================

STANDARD_SECTIONS = [
    "Produce",
    "Meat & Seafood",
    "Dairy & Eggs",
    "Grains & Bread",
    "Canned Goods",
    "Frozen",
    "Pantry",
    "Spices & Herbs",
    "Beverages",
    "Other",
]

# Checked in order against the ingredient's category label
_SECTION_PATTERNS = [
    ("Produce", re.compile(r'produce|vegetable|fruit|veg|fresh', re.I)),
    ("Meat & Seafood", re.compile(r'meat|poultry|beef|chicken|pork|seafood|fish|protein', re.I)),
    ("Dairy & Eggs", re.compile(r'dairy|cheese|milk|egg|yogurt', re.I)),
    ("Grains & Bread", re.compile(r'grain|bread|pasta|rice|cereal', re.I)),
    ("Canned Goods", re.compile(r'can|tin|canned', re.I)),
    ("Frozen", re.compile(r'frozen', re.I)),
    ("Pantry", re.compile(r'pantry|dry good|staple|baking', re.I)),
    ("Spices & Herbs", re.compile(r'spice|herb|seasoning', re.I)),
    ("Beverages", re.compile(r'beverage|drink|juice|water', re.I)),
]

# For items the extractor could only file under Other, look at the name
_NAME_HINTS = [
    ("Frozen", re.compile(r'\bfrozen\b', re.I)),
    ("Canned Goods", re.compile(r'\bcanned\b|\btinned\b|\bcan of\b', re.I)),
    ("Spices & Herbs", re.compile(r'spice|herb|\bsalt\b|cumin|paprika|cinnamon|oregano|basil|thyme|seasoning', re.I)),
    ("Beverages", re.compile(r'juice|coffee|\btea\b|\bwater\b|drink', re.I)),
    ("Pantry", re.compile(r'\boil\b|vinegar|sauce|honey|sugar|stock|broth|syrup|\bnuts?\b|beans|lentils', re.I)),
]


def map_to_section(category: str, name: str = "") -> str:
    """Map an ingredient category (and, for Other, its name) to a store section."""
    label = category or "Other"
    for section, pattern in _SECTION_PATTERNS:
        if pattern.search(label):
            return section
    for section, pattern in _NAME_HINTS:
        if pattern.search(name or ""):
            return section
    return "Other"


# ============================================================================
# SHOPPING-FRIENDLY ROUNDING
# ============================================================================

def round_for_shopping(qty: float, unit_type: str) -> float:
    """
    Round quantities to practical shopping values.

    Instead of precise decimals (4.92 kg, 127.8 g), round to increments
    that make sense when actually shopping.

    Args:
        qty: The quantity to round
        unit_type: One of 'kg', 'g', 'L', 'ml', 'count'
    """
    if qty <= 0:
        return qty

    if unit_type in ('kg', 'L'):
        # Nearest 0.25
        return round(qty * 4) / 4

    if unit_type in ('g', 'ml'):
        if qty >= 100:
            return round(qty / 25) * 25
        return max(5, round(qty / 5) * 5)

    if unit_type == 'count':
        # If you need any, you need at least 1
        return max(1, round(qty))

    return round(qty, 1)


# ============================================================================
# CONVERSION CONSTANTS
# ============================================================================

WEIGHT_TO_GRAMS = {
    "gram": 1, "grams": 1, "g": 1,
    "kilogram": 1000, "kilograms": 1000, "kg": 1000,
    "pound": 454, "pounds": 454, "lb": 454, "lbs": 454,
    "ounce": 28, "ounces": 28, "oz": 28,
}

# Only true liquid measures; tbsp/tsp of dry goods are left alone
VOLUME_TO_ML = {
    "milliliter": 1, "milliliters": 1, "ml": 1,
    "liter": 1000, "liters": 1000, "l": 1000,
    "cup": 240, "cups": 240,
    "fluid ounce": 30, "fluid ounces": 30, "fl oz": 30,
}

COUNT_UNITS = {"", "whole", "piece", "pieces", "item", "items", "medium", "large", "small"}


def normalize_name(name: Optional[str]) -> str:
    """Normalize food/unit names for lookup."""
    if not name:
        return ""
    return name.lower().strip()


def _numeric(quantity: Any) -> Optional[float]:
    if isinstance(quantity, bool):
        return None
    if isinstance(quantity, (int, float)):
        return float(quantity)
    try:
        return float(str(quantity).strip())
    except (TypeError, ValueError):
        return None


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class ShoppingListItem:
    name: str
    quantity: Any
    unit: str
    category: str
    estimated_price: Optional[float] = None
    optional: bool = False
    checked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "category": self.category,
            "estimated_price": self.estimated_price,
            "optional": self.optional,
            "checked": self.checked,
        }


@dataclass
class AggregatedFood:
    """Aggregated quantities for a single ingredient name."""
    name: str
    section: str
    total_grams: float = 0
    total_ml: float = 0
    total_count: float = 0
    price: float = 0
    has_price: bool = False
    optional: bool = True
    # Records whose quantity/unit could not be converted
    untouched: List[IngredientRecord] = field(default_factory=list)

    def add_price(self, price: Optional[float]) -> None:
        if price is not None:
            self.price += price
            self.has_price = True


@dataclass
class ShoppingList:
    categories: Dict[str, List[ShoppingListItem]] = field(default_factory=dict)
    total_cost: float = 0.0
    budget_status: str = "unknown"
    status: str = "success"
    message: Optional[str] = None

    @property
    def items(self) -> List[ShoppingListItem]:
        return [item for items in self.categories.values() for item in items]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "categories": {section: [i.to_dict() for i in items]
                           for section, items in self.categories.items()},
            "items": [i.to_dict() for i in self.items],
            "totalCost": self.total_cost,
            "budgetStatus": self.budget_status,
            "status": self.status,
        }
        if self.message:
            data["message"] = self.message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShoppingList":
        categories = {
            section: [ShoppingListItem(**{k: v for k, v in item.items()
                                          if k in ShoppingListItem.__dataclass_fields__})
                      for item in items]
            for section, items in (data.get("categories") or {}).items()
        }
        return cls(
            categories=categories,
            total_cost=float(data.get("totalCost", 0) or 0),
            budget_status=data.get("budgetStatus", "unknown"),
            status=data.get("status", "success"),
            message=data.get("message"),
        )


# ============================================================================
# CORE AGGREGATION LOGIC
# ============================================================================

def aggregate_ingredients(records: List[IngredientRecord]) -> List[AggregatedFood]:
    """
    Aggregate ingredient records by normalized name.

    Weights are summed in grams, liquid volumes in millilitres and unitless
    counts as counts. Anything else (tbsp of spice, "as needed") is kept
    untouched on the aggregate.
    """
    aggregated: Dict[str, AggregatedFood] = {}

    for record in records:
        key = normalize_name(record.name)
        if not key:
            continue
        if key not in aggregated:
            aggregated[key] = AggregatedFood(
                name=record.name.strip(),
                section=map_to_section(record.category.value, record.name),
            )
        agg = aggregated[key]
        agg.add_price(record.estimated_price)
        agg.optional = agg.optional and record.optional

        quantity = _numeric(record.quantity)
        unit_name = normalize_name(record.unit)

        if quantity is not None and unit_name in WEIGHT_TO_GRAMS:
            agg.total_grams += quantity * WEIGHT_TO_GRAMS[unit_name]
        elif quantity is not None and unit_name in VOLUME_TO_ML:
            agg.total_ml += quantity * VOLUME_TO_ML[unit_name]
        elif quantity is not None and unit_name in COUNT_UNITS:
            agg.total_count += quantity
        else:
            logger.debug(f"  Unconverted: {record.quantity} {record.unit} {record.name}")
            agg.untouched.append(record)

    logger.info(f"Aggregated {len(aggregated)} foods from {len(records)} ingredients")
    return list(aggregated.values())


def _items_for(agg: AggregatedFood) -> List[ShoppingListItem]:
    lines = []
    if agg.total_grams:
        if agg.total_grams >= 1000:
            lines.append((round_for_shopping(agg.total_grams / 1000, 'kg'), "kg"))
        else:
            lines.append((round_for_shopping(agg.total_grams, 'g'), "g"))
    if agg.total_ml:
        if agg.total_ml >= 1000:
            lines.append((round_for_shopping(agg.total_ml / 1000, 'L'), "L"))
        else:
            lines.append((round_for_shopping(agg.total_ml, 'ml'), "ml"))
    if agg.total_count:
        lines.append((round_for_shopping(agg.total_count, 'count'), ""))
    for record in agg.untouched:
        # Identical unconvertible lines ("as needed") collapse into one
        if (record.quantity, record.unit) not in lines:
            lines.append((record.quantity, record.unit))

    price = round(agg.price, 2) if agg.has_price else None
    items = []
    for index, (quantity, unit) in enumerate(lines):
        items.append(ShoppingListItem(
            name=agg.name,
            quantity=quantity,
            unit=unit,
            category=agg.section,
            # Price belongs to the food, so it is carried once
            estimated_price=price if index == 0 else None,
            optional=agg.optional,
        ))
    return items


def generate_shopping_list(ingredients: Optional[CategorizedIngredientList],
                           budget: Optional[float] = None) -> ShoppingList:
    """
    Build a sectioned shopping list from extracted ingredients. Never raises.

    Sections follow STANDARD_SECTIONS order, items are sorted by name and
    empty sections are dropped. ``budget_status`` is only set when a budget
    is given. An extraction that produced nothing but an error yields
    ``status="error"`` with that message.
    """
    if ingredients is None:
        return ShoppingList(status="error", message="No ingredients data available")

    try:
        records = ingredients.items()
        if not records and ingredients.error:
            logger.error(f"❌ No shopping list: {ingredients.error}")
            return ShoppingList(status="error", message=ingredients.error)

        sections: Dict[str, List[ShoppingListItem]] = {s: [] for s in STANDARD_SECTIONS}
        for agg in aggregate_ingredients(records):
            sections.setdefault(agg.section, []).extend(_items_for(agg))

        categories = {}
        for section, items in sections.items():
            if items:
                categories[section] = sorted(items, key=lambda i: i.name.lower())

        total_cost = round(sum(i.estimated_price or 0 for items in categories.values() for i in items), 2)
        budget_status = "unknown"
        if budget:
            budget_status = "under_budget" if total_cost <= budget else "over_budget"

        shopping_list = ShoppingList(
            categories=categories,
            total_cost=total_cost,
            budget_status=budget_status,
            # Partial extraction still yields a usable list; keep the warning
            message=ingredients.error,
        )
        logger.info(f"📊 Shopping list: {len(shopping_list.items)} items in "
                    f"{len(categories)} sections, total {total_cost:.2f} ({budget_status})")
        return shopping_list
    except Exception as e:
        logger.error(f"❌ Shopping list generation failed: {e}")
        return ShoppingList(status="error", message=str(e))
