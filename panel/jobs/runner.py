"""Plan generation job - runs a user's pending stages in the huey worker."""
import asyncio

from .huey_config import huey
from generation_state import GenerationStateError, GenerationStatus
from orchestrator import PlanOrchestrator
from plan_store import PlanStore
from tools.logging_utils import get_logger

logger = get_logger(__name__)


@huey.task()
def run_plan_generation(user_id: str):
    """
    Advance the user's run until it completes, fails or is cancelled.

    The web process has already recorded the run (start or Continue) in the
    store; this task picks it up from there.
    """
    store = PlanStore()
    try:
        orchestrator = PlanOrchestrator.from_store(user_id, store)
    except GenerationStateError as e:
        logger.error(f"❌ {e}")
        return None

    progress = orchestrator.progress()
    if progress.status is not GenerationStatus.RUNNING:
        logger.info(f"Skipping plan generation for user {user_id}: status '{progress.status.value}'")
        return progress.to_dict()

    logger.info(f"🚀 Worker picked up plan generation for user {user_id} at {progress.current_step.name}")
    final = asyncio.run(orchestrator.run_to_completion())
    logger.info(f"📊 Plan generation for user {user_id} finished with status '{final.status.value}'")
    return final.to_dict()
