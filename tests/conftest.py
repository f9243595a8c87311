"""
Pytest Configuration and Fixtures
=================================

Provides shared fixtures for the test suite:
- Scripted fake chat client (no network)
- Recording sleep (backoff delays are asserted, never waited for)
- Temporary SQLite plan store
- Sample plan requests and meal plans

SAFETY: Nothing here talks to a real chat API. FITPLAN_DATA_DIR points at a
throwaway directory before config is imported, so tests never touch data/.
"""

import os
import tempfile

os.environ.setdefault("FITPLAN_DATA_DIR", tempfile.mkdtemp(prefix="fitplan-tests-"))

import pytest
from typing import Any, Dict, List


# =============================================================================
# Fakes
# =============================================================================

class FakeLLM:
    """
    Stand-in for llm_client.LLMClient.

    ``responses`` are consumed in order; an Exception instance is raised,
    anything else is returned. Every call is recorded.
    """

    def __init__(self, responses: List[Any] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Any) -> "FakeLLM":
        self.responses.extend(responses)
        return self

    async def complete_json(self, system_prompt, prompt, temperature=None, max_tokens=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "prompt": prompt,
            "temperature": temperature,
        })
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def plan_store(tmp_path):
    """Fresh SQLite store per test."""
    from plan_store import PlanStore
    return PlanStore(tmp_path / "plans.db")


@pytest.fixture
def sample_request() -> Dict[str, Any]:
    return {
        "fitnessGoal": "muscleBuild",
        "workoutDaysPerWeek": 4,
        "workoutDuration": 45,
        "fitnessLevel": "intermediate",
        "activityLevel": "moderate",
        "weeklyBudget": 60,
        "budgetCurrency": "GBP",
        "dietPreferences": ["high-protein"],
        "restrictions": ["peanuts"],
        "age": 32,
        "sex": "male",
        "heightCm": 180,
        "weightKg": 80,
    }


@pytest.fixture
def sample_meal_plan() -> Dict[str, Any]:
    return {
        "weeklyMeals": {
            "Monday": {
                "breakfast": {"name": "Oats", "ingredients": ["80g oats", "250ml milk"]},
                "lunch": {"name": "Chicken and rice", "ingredients": ["150g chicken breast", "100g rice"]},
            },
            "Tuesday": {
                "breakfast": {"name": "Eggs on toast", "ingredients": ["2 eggs", "2 slices bread"]},
                "snacks": [{"name": "Apple", "ingredients": ["1 apple"]}],
            },
        }
    }


@pytest.fixture
def workout_response() -> Dict[str, Any]:
    return {
        "weeklySchedule": {
            "Monday": {"focus": "Upper body", "exercises": [{"name": "Bench press", "sets": 4, "reps": "8"}]},
            "Thursday": {"focus": "Lower body", "exercises": [{"name": "Squat", "sets": 4, "reps": "6"}]},
        },
        "notes": "Warm up for 10 minutes",
    }


@pytest.fixture
def day_response() -> Dict[str, Any]:
    return {
        "categories": {
            "produce": [{"name": "Apple", "quantity": 1, "unit": "", "estimated_price": 0.4}],
            "protein": [{"name": "Chicken breast", "quantity": 150, "unit": "g", "estimated_price": 2.5}],
            "dairy": [{"name": "Milk", "quantity": 250, "unit": "ml", "estimated_price": 0.3}],
            "grains": [{"name": "Oats", "quantity": 80, "unit": "g", "estimated_price": 0.2}],
            "other": [],
        }
    }


# =============================================================================
# Test Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "readonly: marks test as pure logic (no database writes)"
    )
    config.addinivalue_line(
        "markers", "slow: marks test as slow (may take >10 seconds)"
    )
