"""Plan routes - start, poll, continue, cancel and reset plan generation."""
from flask import Blueprint, Response, abort, current_app, jsonify, request
import json
import time

from config import get_admin_user_ids
from generation_state import (
    GenerationConflictError,
    GenerationStateError,
    ProgressReporter,
    seconds_since,
)
from orchestrator import PlanOrchestrator
from panel.jobs.runner import run_plan_generation
from plan_generator import validate_plan_request
from tools.logging_utils import get_logger

logger = get_logger(__name__)

bp = Blueprint('plans', __name__)

RESET_FORBIDDEN_MESSAGE = (
    "Only administrators can reset a plan generation. "
    "Please contact support if your plan is stuck."
)


def _store():
    return current_app.config['PLAN_STORE']


def _user_id() -> str:
    """Caller identity from the X-User-Id header."""
    user_id = request.headers.get('X-User-Id', '').strip()
    if not user_id:
        abort(401, description='Missing X-User-Id header')
    return user_id


def _orchestrator(user_id: str) -> PlanOrchestrator:
    return PlanOrchestrator.from_store(user_id, _store())


def _polled_progress(store, user_id: str):
    """Stored snapshot with the countdown caught up to now, or None."""
    progress = store.get_progress(user_id)
    if progress is None:
        return None
    reporter = ProgressReporter(lambda: progress)
    reporter.catch_up(seconds_since(progress.updated_at))
    return reporter.get_progress()


@bp.route('/generate', methods=['POST'])
def generate():
    """Validate the request, record the run and queue it for the worker."""
    user_id = _user_id()
    payload = request.get_json(silent=True)
    is_valid, errors = validate_plan_request(payload)
    if not is_valid:
        return jsonify({'success': False, 'errors': errors}), 400

    orchestrator = PlanOrchestrator(user_id, store=_store())
    try:
        progress = orchestrator.start(payload)
    except GenerationConflictError as e:
        return jsonify({'success': False, 'error': str(e)}), 409

    run_plan_generation(user_id)
    logger.info(f"📋 Queued plan generation for user {user_id}")
    return jsonify({'success': True, 'progress': progress.to_dict()}), 202


@bp.route('/progress')
def progress():
    """Polling contract for the caller's run."""
    snapshot = _polled_progress(_store(), _user_id())
    if snapshot is None:
        return jsonify({'error': 'No plan generation found'}), 404
    return jsonify(snapshot.to_dict())


@bp.route('/progress/stream')
def progress_stream():
    """Server-Sent Events stream of the polling contract until the run ends."""
    user_id = _user_id()
    store = _store()

    def generate():
        yield ": keepalive\n\n"

        KEEPALIVE_INTERVAL_S = 15.0
        last_sent = None
        last_activity = time.monotonic()
        while True:
            snapshot = _polled_progress(store, user_id)
            if snapshot is None:
                yield f"event: done\ndata: {json.dumps({'error': 'No plan generation found'})}\n\n"
                break

            data = json.dumps(snapshot.to_dict())
            if data != last_sent:
                yield f"data: {data}\n\n"
                last_sent = data
                last_activity = time.monotonic()

            now = time.monotonic()
            if now - last_activity >= KEEPALIVE_INTERVAL_S:
                yield ": keepalive\n\n"
                last_activity = now

            if not snapshot.is_generating:
                yield f"event: done\ndata: {data}\n\n"
                break

            time.sleep(1.0)

    return Response(
        generate(),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no'
        }
    )


@bp.route('/continue', methods=['POST'])
def continue_generation():
    """Retry the stage a failed run stopped at."""
    user_id = _user_id()
    try:
        orchestrator = _orchestrator(user_id)
        progress = orchestrator.resume()
    except GenerationStateError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    run_plan_generation(user_id)
    return jsonify({'success': True, 'progress': progress.to_dict()}), 202


@bp.route('/cancel', methods=['POST'])
def cancel():
    user_id = _user_id()
    try:
        orchestrator = _orchestrator(user_id)
    except GenerationStateError as e:
        return jsonify({'success': False, 'error': str(e)}), 404

    if orchestrator.cancel():
        return jsonify({'success': True, 'progress': orchestrator.progress().to_dict()})
    return jsonify({'success': False, 'error': 'No active plan generation to cancel'}), 400


@bp.route('/reset', methods=['POST'])
def reset():
    """
    Admin-only reset of a user's plan generation.

    Admins may pass ``userId`` to reset someone else's run; membership comes
    from admin.user_ids in config, never from the request.
    """
    caller = _user_id()
    if caller not in get_admin_user_ids():
        logger.warning(f"⚠️  Reset refused for non-admin user {caller}")
        return jsonify({'success': False, 'error': RESET_FORBIDDEN_MESSAGE}), 403

    body = request.get_json(silent=True) or {}
    target = str(body.get('userId') or caller)
    orchestrator = PlanOrchestrator(target, store=_store())
    orchestrator.reset(is_admin=True)
    return jsonify({'success': True, 'progress': orchestrator.progress().to_dict()})


@bp.route('/active')
def active_plan():
    plan = _store().get_active_plan(_user_id())
    if plan is None:
        return jsonify({'error': 'No active plan'}), 404
    return jsonify(plan)
