"""
Ingredient Extraction Tests
===========================

Retry/backoff policy, fallback parsing and payload handling of the
extraction client. The chat API is a scripted FakeLLM and backoff delays
are recorded, not slept.
"""

import pytest
import asyncio

from llm_client import LLMError, LLMResponseError, RateLimitError


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def make_extractor(llm, sleep):
    from ingredient_extractor import IngredientExtractor
    return IngredientExtractor(
        llm, sleep=sleep,
        meal_max_retries=3, meal_backoff_base=1.0,
        day_max_retries=3, day_backoff_base=5.0,
        inter_day_delay=5.0,
    )


# =============================================================================
# Test: Single meal extraction
# =============================================================================

class TestExtractForMeal:

    def test_success_returns_parsed_ingredients(self, fake_llm, recording_sleep):
        fake_llm.queue({"ingredients": [
            {"name": "Salmon fillet", "quantity": "150", "unit": "g"},
            {"name": "Broccoli", "quantity": 1, "unit": "cup"},
        ]})
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_meal("Salmon bowl", "Salmon with broccoli"))

        from ingredient_extractor import IngredientCategory
        assert result.error is None
        assert result.total_count == 2
        assert result.meal_name == "Salmon bowl"
        assert result.categories[IngredientCategory.PROTEIN][0].quantity == 150
        assert result.categories[IngredientCategory.PRODUCE][0].name == "Broccoli"
        assert recording_sleep.delays == []

    def test_any_error_retried_with_exponential_backoff(self, fake_llm, recording_sleep):
        """1s, 2s, 4s between four calls, then the fallback parser answers."""
        fake_llm.queue(
            LLMError("server error", status=500),
            asyncio.TimeoutError(),
            LLMResponseError("bad json"),
            ValueError("anything"),
        )
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_meal("Chicken and rice", ""))

        assert len(fake_llm.calls) == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]
        names = sorted(r.name for r in result.items())
        assert names == ["Chicken", "rice"]
        assert "after 4 attempts" in result.error

    def test_fallback_reads_ingredients_block_when_ai_keeps_failing(self, fake_llm, recording_sleep):
        from ingredient_extractor import IngredientCategory

        fake_llm.queue(*[LLMError("unavailable", status=503) for _ in range(4)])
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_meal(
            "Chicken rice bowl", "ingredients: [2 cups rice, 100g chicken]"))

        assert len(fake_llm.calls) == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]
        assert result.total_count == 2
        rice = result.categories[IngredientCategory.GRAINS][0]
        assert (rice.name, rice.quantity, rice.unit) == ("rice", 2, "cups")
        chicken = result.categories[IngredientCategory.PROTEIN][0]
        assert (chicken.name, chicken.quantity, chicken.unit) == ("chicken", 100, "g")
        assert result.error is not None

    def test_recovers_on_third_call(self, fake_llm, recording_sleep):
        fake_llm.queue(
            RateLimitError(),
            LLMError("flaky"),
            {"produce": ["Spinach"]},
        )
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_meal("Green salad"))

        assert recording_sleep.delays == [1.0, 2.0]
        assert result.error is None
        assert result.items()[0].quantity == "as needed"


# =============================================================================
# Test: Day extraction
# =============================================================================

class TestExtractForDay:

    def test_rate_limit_retried_then_gives_up(self, fake_llm, recording_sleep):
        fake_llm.queue(*[RateLimitError() for _ in range(4)])
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_day("Monday", {"lunch": {"name": "Soup"}}))

        assert len(fake_llm.calls) == 4
        assert recording_sleep.delays == [5.0, 10.0, 20.0]
        assert result.total_count == 0
        assert "Monday" in result.error
        assert "4 attempts" in result.error

    def test_rate_limit_message_is_recognised(self, fake_llm, recording_sleep, day_response):
        fake_llm.queue(LLMError("Rate limit reached for requests"), day_response)
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_day("Monday", {}))

        assert recording_sleep.delays == [5.0]
        assert result.error is None
        assert result.total_count == 4

    def test_other_errors_are_not_retried(self, fake_llm, recording_sleep):
        fake_llm.queue(LLMError("Chat API error 500", status=500))
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_day("Tuesday", {}))

        assert len(fake_llm.calls) == 1
        assert recording_sleep.delays == []
        assert result.total_count == 0
        assert "Tuesday" in result.error


# =============================================================================
# Test: Plan extraction
# =============================================================================

class TestExtractForPlan:

    def test_days_run_sequentially_with_delay(self, fake_llm, recording_sleep, sample_meal_plan, day_response):
        fake_llm.queue(day_response, day_response)
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_plan(sample_meal_plan))

        assert len(fake_llm.calls) == 2
        assert "Monday" in fake_llm.calls[0]["prompt"]
        assert "Tuesday" in fake_llm.calls[1]["prompt"]
        assert recording_sleep.delays == [5.0]
        assert result.total_count == 8
        assert result.error is None

    def test_failed_day_is_skipped_and_recorded(self, fake_llm, recording_sleep, sample_meal_plan, day_response):
        fake_llm.queue(day_response, LLMError("boom", status=500))
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_plan(sample_meal_plan))

        assert result.total_count == 4
        assert len(result.errors) == 1
        assert "Tuesday" in result.error

    def test_should_continue_stops_further_calls(self, fake_llm, recording_sleep, sample_meal_plan, day_response):
        fake_llm.queue(day_response)
        extractor = make_extractor(fake_llm, recording_sleep)
        checks = iter([True, False])

        result = run_async(extractor.extract_for_plan(sample_meal_plan, should_continue=lambda: next(checks)))

        assert len(fake_llm.calls) == 1
        assert result.total_count == 4

    def test_plan_without_meals(self, fake_llm, recording_sleep):
        extractor = make_extractor(fake_llm, recording_sleep)

        result = run_async(extractor.extract_for_plan({"weeklyMeals": {"Monday": {"lunch": {"name": "Mystery"}}}}))

        assert fake_llm.calls == []
        assert result.total_count == 0
        assert "No meals" in result.error


# =============================================================================
# Test: Fallback parser
# =============================================================================

class TestFallbackParser:

    @pytest.mark.readonly
    def test_ingredients_block(self):
        from ingredient_extractor import IngredientCategory, parse_meal_fallback

        result = parse_meal_fallback("Breakfast", "ingredients: [2 large eggs, 100ml milk, salt]")

        records = {r.name: r for r in result.items()}
        assert records["large eggs"].quantity == 2
        assert records["large eggs"].unit == ""
        assert records["large eggs"].category is IngredientCategory.DAIRY
        assert records["milk"].quantity == 100
        assert records["milk"].unit == "ml"
        assert records["salt"].quantity == 1

    @pytest.mark.readonly
    def test_quantity_unit_scan(self):
        from ingredient_extractor import IngredientCategory, parse_meal_fallback

        result = parse_meal_fallback("Dinner", "Serve 200g salmon, 100g rice")

        records = {r.name: r for r in result.items()}
        assert records["salmon"].quantity == 200
        assert records["salmon"].category is IngredientCategory.PROTEIN
        assert records["rice"].category is IngredientCategory.GRAINS

    @pytest.mark.readonly
    def test_meal_name_split(self):
        from ingredient_extractor import parse_meal_fallback

        result = parse_meal_fallback("Turkey with spinach & quinoa")

        assert sorted(r.name for r in result.items()) == ["Turkey", "quinoa", "spinach"]
        assert all(r.quantity == "as needed" for r in result.items())

    @pytest.mark.readonly
    def test_placeholder_serving(self):
        from ingredient_extractor import IngredientCategory, parse_meal_fallback

        result = parse_meal_fallback("Xo")

        assert result.total_count == 1
        record = result.items()[0]
        assert (record.name, record.quantity, record.unit) == ("Xo", 1, "serving")
        assert record.category is IngredientCategory.OTHER


# =============================================================================
# Test: Data model and payload parsing
# =============================================================================

class TestDataModel:

    @pytest.mark.readonly
    def test_total_count_tracks_lists(self):
        from ingredient_extractor import (
            CategorizedIngredientList, IngredientCategory, IngredientRecord,
        )

        result = CategorizedIngredientList()
        result.add(IngredientRecord("Apple", 1, "", IngredientCategory.PRODUCE))
        result.add(IngredientRecord("Milk", 1, "l", IngredientCategory.DAIRY))
        assert result.total_count == 2
        result.categories[IngredientCategory.PRODUCE].clear()
        assert result.total_count == 1

    @pytest.mark.readonly
    def test_to_dict_and_back(self, day_response):
        from ingredient_extractor import CategorizedIngredientList, parse_extraction_payload

        original = parse_extraction_payload(day_response)
        original.record_error("Failed to extract ingredients for Sunday")
        data = original.to_dict()

        assert data["totalCount"] == 4
        assert set(data["categories"]) == {"produce", "protein", "dairy", "grains", "other"}
        restored = CategorizedIngredientList.from_dict(data)
        assert restored.total_count == 4
        assert restored.errors == ["Failed to extract ingredients for Sunday"]

    @pytest.mark.readonly
    def test_payload_with_flat_ingredient_list(self):
        from ingredient_extractor import IngredientCategory, parse_extraction_payload

        result = parse_extraction_payload({"ingredients": [
            {"name": "Tofu", "quantity": "200", "unit": "g"},
            {"name": "Soy sauce", "quantity": "1.5", "unit": "tbsp", "category": "Other"},
        ]})

        assert result.categories[IngredientCategory.PROTEIN][0].quantity == 200
        assert result.categories[IngredientCategory.OTHER][0].quantity == 1.5

    @pytest.mark.readonly
    def test_payload_without_ingredients_raises(self):
        from ingredient_extractor import parse_extraction_payload

        with pytest.raises(LLMResponseError):
            parse_extraction_payload({"message": "sorry"})

    @pytest.mark.readonly
    def test_backoff_doubles(self):
        from ingredient_extractor import ExtractionAttempt

        attempt = ExtractionAttempt()
        delays = []
        for _ in range(3):
            attempt.record_failure(RuntimeError("x"))
            delays.append(attempt.backoff_seconds(5))
        assert delays == [5, 10, 20]

    @pytest.mark.readonly
    def test_format_meal_plan_drops_empty_meals_and_days(self):
        from ingredient_extractor import format_meal_plan_for_extraction

        days = format_meal_plan_for_extraction({"weeklyMealPlan": {
            "Monday": {
                "breakfast": {"name": "Porridge", "ingredients": ["oats"]},
                "lunch": {"name": "Nothing listed"},
            },
            "Tuesday": {"dinner": {"name": "Empty", "ingredients": []}},
            "Wednesday": {"dinner": {"name": "Curry", "description": "Chickpea curry"}},
        }})

        assert list(days) == ["Monday", "Wednesday"]
        assert list(days["Monday"]) == ["breakfast"]
        assert days["Wednesday"]["dinner"] == {"name": "Curry", "description": "Chickpea curry"}
