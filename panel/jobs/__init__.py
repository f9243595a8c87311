"""Job queue module - exports public API."""
from .huey_config import huey
from .runner import run_plan_generation
