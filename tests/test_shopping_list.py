"""
Shopping List Tests
===================

Section mapping, unit aggregation, shopping-friendly rounding and the
budget/status fields of the generated list.
"""

import pytest

from ingredient_extractor import CategorizedIngredientList, IngredientCategory, IngredientRecord
from shopping_list import (
    STANDARD_SECTIONS,
    ShoppingList,
    generate_shopping_list,
    map_to_section,
    round_for_shopping,
)


def ingredients(*records):
    result = CategorizedIngredientList()
    for record in records:
        result.add(record)
    return result


def rec(name, quantity, unit, category, price=None):
    return IngredientRecord(name, quantity, unit, category, estimated_price=price)


class TestSections:

    @pytest.mark.readonly
    @pytest.mark.parametrize("category,name,section", [
        ("Produce", "Spinach", "Produce"),
        ("Protein", "Chicken breast", "Meat & Seafood"),
        ("Dairy", "Milk", "Dairy & Eggs"),
        ("Grains", "Rice", "Grains & Bread"),
        ("Other", "Olive oil", "Pantry"),
        ("Other", "Sea salt", "Spices & Herbs"),
        ("Other", "Frozen peas", "Frozen"),
        ("Other", "Mystery item", "Other"),
    ])
    def test_map_to_section(self, category, name, section):
        assert map_to_section(category, name) == section


class TestRounding:

    @pytest.mark.readonly
    def test_round_for_shopping(self):
        assert round_for_shopping(127.8, 'g') == 125
        assert round_for_shopping(3, 'g') == 5
        assert round_for_shopping(4.92, 'kg') == 5.0
        assert round_for_shopping(0.3, 'count') == 1
        assert round_for_shopping(0, 'g') == 0


class TestGenerateShoppingList:

    @pytest.mark.readonly
    def test_duplicates_are_aggregated(self):
        result = generate_shopping_list(ingredients(
            rec("Chicken breast", 150, "g", IngredientCategory.PROTEIN, 2.5),
            rec("chicken breast", 150, "g", IngredientCategory.PROTEIN, 2.5),
            rec("Rice", 0.75, "kg", IngredientCategory.GRAINS),
            rec("Rice", 600, "g", IngredientCategory.GRAINS),
            rec("Eggs", 2, "", IngredientCategory.DAIRY),
            rec("Eggs", 3, "", IngredientCategory.DAIRY),
        ))

        chicken = result.categories["Meat & Seafood"]
        assert len(chicken) == 1
        assert (chicken[0].quantity, chicken[0].unit) == (300, "g")
        assert chicken[0].estimated_price == 5.0
        rice = result.categories["Grains & Bread"][0]
        assert (rice.quantity, rice.unit) == (1.25, "kg")
        eggs = result.categories["Dairy & Eggs"][0]
        assert eggs.quantity == 5

    @pytest.mark.readonly
    def test_unconvertible_quantities_kept_separately(self):
        result = generate_shopping_list(ingredients(
            rec("Olive oil", 1, "tbsp", IngredientCategory.OTHER),
            rec("Olive oil", 1, "tbsp", IngredientCategory.OTHER),
            rec("Olive oil", 200, "ml", IngredientCategory.OTHER),
            rec("Salt", "as needed", "", IngredientCategory.OTHER),
        ))

        oil = result.categories["Pantry"]
        assert [(i.quantity, i.unit) for i in oil] == [(200, "ml"), (1, "tbsp")]
        assert result.categories["Spices & Herbs"][0].quantity == "as needed"

    @pytest.mark.readonly
    def test_sections_ordered_and_items_sorted(self):
        result = generate_shopping_list(ingredients(
            rec("Yogurt", 1, "", IngredientCategory.DAIRY),
            rec("Tomato", 2, "", IngredientCategory.PRODUCE),
            rec("Apple", 3, "", IngredientCategory.PRODUCE),
        ))

        assert list(result.categories) == ["Produce", "Dairy & Eggs"]
        assert [i.name for i in result.categories["Produce"]] == ["Apple", "Tomato"]
        sections = list(result.categories)
        assert sections == [s for s in STANDARD_SECTIONS if s in sections]

    @pytest.mark.readonly
    def test_budget_status(self):
        items = ingredients(rec("Steak", 500, "g", IngredientCategory.PROTEIN, 12.0))

        assert generate_shopping_list(items).budget_status == "unknown"
        assert generate_shopping_list(items, budget=20).budget_status == "under_budget"
        over = generate_shopping_list(items, budget=10)
        assert over.budget_status == "over_budget"
        assert over.total_cost == 12.0

    @pytest.mark.readonly
    def test_failed_extraction_yields_error_status(self):
        failed = CategorizedIngredientList.empty(error="Failed to extract ingredients for Monday")

        result = generate_shopping_list(failed)

        assert result.status == "error"
        assert result.message == "Failed to extract ingredients for Monday"
        assert result.items == []

    @pytest.mark.readonly
    def test_partial_extraction_keeps_warning(self):
        partial = ingredients(rec("Apple", 1, "", IngredientCategory.PRODUCE))
        partial.record_error("Failed to extract ingredients for Sunday")

        result = generate_shopping_list(partial)

        assert result.status == "success"
        assert "Sunday" in result.message

    @pytest.mark.readonly
    def test_missing_ingredients(self):
        assert generate_shopping_list(None).status == "error"

    @pytest.mark.readonly
    def test_to_dict_and_back(self):
        result = generate_shopping_list(ingredients(
            rec("Oats", 500, "g", IngredientCategory.GRAINS, 1.2),
        ), budget=30)
        data = result.to_dict()

        assert data["totalCost"] == 1.2
        assert data["budgetStatus"] == "under_budget"
        assert data["items"][0]["name"] == "Oats"
        restored = ShoppingList.from_dict(data)
        assert restored.items[0].quantity == 500
        assert restored.budget_status == "under_budget"
