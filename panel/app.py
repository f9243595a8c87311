"""Flask application factory."""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
import os

from tools.logging_utils import get_logger

logger = get_logger(__name__)


def create_app(store=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', os.urandom(24).hex())

    # Ensure data directory exists
    from config import DATA_DIR
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    if store is None:
        from plan_store import PlanStore
        store = PlanStore()
    app.config['PLAN_STORE'] = store

    # Runs left 'running' by a worker that died
    repaired = store.repair_stale_runs()
    if repaired:
        logger.warning(f"⚠️  Reset {repaired} stale plan generation(s) on startup")

    @app.errorhandler(HTTPException)
    def json_error(e):
        """Return HTTP errors as JSON."""
        return jsonify({'error': e.description}), e.code

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})

    # Register blueprints
    from panel.routes import register_blueprints
    register_blueprints(app)

    return app


# For gunicorn: gunicorn -b 0.0.0.0:8080 panel.app:app
app = create_app()
