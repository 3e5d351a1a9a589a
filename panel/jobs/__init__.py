"""Job queue module - exports public API."""
from .huey_config import huey
from .runner import generate_meal_plan, run_generation
from .dispatch import HueyDispatcher
