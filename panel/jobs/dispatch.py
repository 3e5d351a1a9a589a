"""Huey-backed dispatcher handed to MealPlanService."""
from meal_plan_service import Dispatcher, GenerationTask

from .runner import generate_meal_plan


class HueyDispatcher(Dispatcher):
    """Enqueue generation tasks on the meal-plans huey queue."""

    def enqueue(self, task: GenerationTask) -> None:
        generate_meal_plan(task.plan_id, task.preferences, task.daily_only, task.version)
