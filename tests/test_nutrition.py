"""
Nutrition Target Tests
======================

Mifflin-St Jeor BMR, activity multipliers, goal adjustment and macro split.
"""

import pytest

from nutrition import (
    adjust_calories_for_goal,
    calculate_bmr,
    calculate_macros,
    calculate_nutrition_targets,
    calculate_tdee,
)


class TestNutrition:

    @pytest.mark.readonly
    def test_bmr_by_sex(self):
        assert calculate_bmr(80, 180, 32, "male") == 1770
        assert calculate_bmr(80, 180, 32, "female") == 1604

    @pytest.mark.readonly
    def test_bmr_defaults(self):
        assert calculate_bmr(None, None, None, None) == pytest.approx(1451.5)

    @pytest.mark.readonly
    def test_tdee_and_goal_adjustment(self):
        tdee = calculate_tdee(1770, "moderate")
        assert tdee == 2744
        assert adjust_calories_for_goal(tdee, "muscleBuild") == 3018
        assert adjust_calories_for_goal(tdee, "weightLoss") == 2195
        assert adjust_calories_for_goal(tdee, "stamina") == 2744

    @pytest.mark.readonly
    def test_unknown_activity_uses_light_multiplier(self):
        assert calculate_tdee(1000, "couch") == 1375

    @pytest.mark.readonly
    def test_macros_for_weight_loss(self):
        assert calculate_macros(2000, "weightLoss") == {"protein_g": 200, "carbs_g": 125, "fat_g": 78}

    @pytest.mark.readonly
    def test_targets_from_request(self, sample_request):
        from plan_generator import PlanRequest

        targets = calculate_nutrition_targets(PlanRequest.from_dict(sample_request))

        assert targets.bmr == 1770
        assert targets.tdee == 2744
        assert targets.calories == 3018
        assert (targets.protein_g, targets.carbs_g, targets.fat_g) == (226, 340, 84)
