"""Generation progress and fitness plan persistence with SQLite.

One progress row per user holds the polling snapshot, the request that
started the run, each finished stage's output and a cancel flag. The web
panel and the huey worker run in different processes and meet here.
"""
import json
import sqlite3
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from config import get_config_value
from generation_state import (
    CANCELLED_MESSAGE,
    STALE_RUN_MESSAGE,
    GenerationConflictError,
    GenerationProgress,
    GenerationStatus,
)
from tools.logging_utils import get_logger

logger = get_logger(__name__)


class PlanStore:
    """SQLite-backed store for generation runs and saved plans."""

    def __init__(self, db_path: str = None):
        self.db_path = str(db_path or get_config_value("store", "plans_db"))
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_db(self):
        """Get database connection."""
        conn = sqlite3.connect(self.db_path, timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_db()
        conn.execute('''
            CREATE TABLE IF NOT EXISTS generation_progress (
                user_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                progress_json TEXT NOT NULL,
                request_json TEXT,
                run_id TEXT,
                stage_outputs TEXT NOT NULL DEFAULT '{}',
                cancel_requested INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')
        conn.execute('''
            CREATE TABLE IF NOT EXISTS fitness_plans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                plan_json TEXT NOT NULL,
                summary_json TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                deactivated_at TEXT,
                deactivation_reason TEXT
            )
        ''')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_plans_user ON fitness_plans (user_id, is_active)')
        conn.close()

    # =========================================================================
    # Generation progress
    # =========================================================================

    def begin_run(self, user_id: str, progress: GenerationProgress,
                  request: Optional[Dict[str, Any]] = None, run_id: str = None) -> str:
        """
        Record a new run for the user.

        Writes guarded by ``run_id`` are refused once the row belongs to a
        different run (a reset or a newer start). Returns the run id.

        Raises:
            GenerationConflictError: a run is already in progress
        """
        run_id = run_id or uuid.uuid4().hex
        now = datetime.now().isoformat()
        conn = self._get_db()
        try:
            conn.execute('BEGIN IMMEDIATE')
            row = conn.execute(
                'SELECT status FROM generation_progress WHERE user_id = ?', (str(user_id),)
            ).fetchone()
            if row and row['status'] == GenerationStatus.RUNNING.value:
                conn.execute('ROLLBACK')
                raise GenerationConflictError(f"Plan generation already in progress for user {user_id}")
            conn.execute(
                'INSERT OR REPLACE INTO generation_progress '
                '(user_id, status, progress_json, request_json, run_id, stage_outputs, cancel_requested, '
                'created_at, updated_at) '
                'VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)',
                (str(user_id), progress.status.value, json.dumps(progress.to_dict()),
                 json.dumps(request) if request is not None else None, run_id, '{}', now, now)
            )
            conn.execute('COMMIT')
        finally:
            conn.close()
        return run_id

    def get_run_id(self, user_id: str) -> Optional[str]:
        conn = self._get_db()
        row = conn.execute(
            'SELECT run_id FROM generation_progress WHERE user_id = ?', (str(user_id),)
        ).fetchone()
        conn.close()
        return row['run_id'] if row else None

    def save_progress(self, user_id: str, progress: GenerationProgress, run_id: str = None) -> bool:
        """
        Write the user's progress snapshot, inserting the row if missing.

        Refused (returns False) when ``run_id`` is given and the row belongs
        to another run or is gone, and when a cancel has been requested but
        the snapshot is not a cancelled one.
        """
        now = datetime.now().isoformat()
        conn = self._get_db()
        try:
            conn.execute('BEGIN IMMEDIATE')
            row = conn.execute(
                'SELECT run_id, cancel_requested FROM generation_progress WHERE user_id = ?', (str(user_id),)
            ).fetchone()
            if row is None:
                if run_id is not None:
                    conn.execute('ROLLBACK')
                    return False
                conn.execute(
                    'INSERT INTO generation_progress (user_id, status, progress_json, created_at, updated_at) '
                    'VALUES (?, ?, ?, ?, ?)',
                    (str(user_id), progress.status.value, json.dumps(progress.to_dict()), now, now)
                )
                conn.execute('COMMIT')
                return True
            if run_id is not None and row['run_id'] != run_id:
                conn.execute('ROLLBACK')
                return False
            if row['cancel_requested'] and progress.status is not GenerationStatus.CANCELLED:
                conn.execute('ROLLBACK')
                return False
            conn.execute(
                'UPDATE generation_progress SET status = ?, progress_json = ?, updated_at = ? WHERE user_id = ?',
                (progress.status.value, json.dumps(progress.to_dict()), now, str(user_id))
            )
            conn.execute('COMMIT')
            return True
        finally:
            conn.close()

    def get_progress(self, user_id: str) -> Optional[GenerationProgress]:
        conn = self._get_db()
        row = conn.execute(
            'SELECT progress_json FROM generation_progress WHERE user_id = ?', (str(user_id),)
        ).fetchone()
        conn.close()
        if not row:
            return None
        return GenerationProgress.from_dict(json.loads(row['progress_json']))

    def get_request(self, user_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_db()
        row = conn.execute(
            'SELECT request_json FROM generation_progress WHERE user_id = ?', (str(user_id),)
        ).fetchone()
        conn.close()
        if not row or not row['request_json']:
            return None
        return json.loads(row['request_json'])

    def save_stage_output(self, user_id: str, stage_name: str, payload: Dict[str, Any],
                          run_id: str = None) -> bool:
        """Add one stage's output to the row. Same ``run_id`` guard as save_progress()."""
        conn = self._get_db()
        try:
            conn.execute('BEGIN IMMEDIATE')
            row = conn.execute(
                'SELECT run_id, stage_outputs FROM generation_progress WHERE user_id = ?', (str(user_id),)
            ).fetchone()
            if row is None or (run_id is not None and row['run_id'] != run_id):
                conn.execute('ROLLBACK')
                return False
            outputs = json.loads(row['stage_outputs'])
            outputs[stage_name] = payload
            conn.execute(
                'UPDATE generation_progress SET stage_outputs = ?, updated_at = ? WHERE user_id = ?',
                (json.dumps(outputs), datetime.now().isoformat(), str(user_id))
            )
            conn.execute('COMMIT')
            return True
        finally:
            conn.close()

    def get_stage_outputs(self, user_id: str) -> Dict[str, Any]:
        conn = self._get_db()
        row = conn.execute(
            'SELECT stage_outputs FROM generation_progress WHERE user_id = ?', (str(user_id),)
        ).fetchone()
        conn.close()
        return json.loads(row['stage_outputs']) if row else {}

    def clear_stage_outputs(self, user_id: str) -> None:
        conn = self._get_db()
        conn.execute(
            "UPDATE generation_progress SET stage_outputs = '{}', updated_at = ? WHERE user_id = ?",
            (datetime.now().isoformat(), str(user_id))
        )
        conn.close()

    def request_cancel(self, user_id: str) -> bool:
        """
        Flag the user's run as cancelled.

        The progress row flips to cancelled immediately so pollers see it;
        the worker notices the flag before its next stage. Returns False when
        there is no run that has started and not yet finished.
        """
        conn = self._get_db()
        try:
            conn.execute('BEGIN IMMEDIATE')
            row = conn.execute(
                'SELECT progress_json FROM generation_progress WHERE user_id = ?', (str(user_id),)
            ).fetchone()
            if not row:
                conn.execute('ROLLBACK')
                return False
            progress = GenerationProgress.from_dict(json.loads(row['progress_json']))
            if progress.is_terminal or progress.status is GenerationStatus.IDLE:
                conn.execute('ROLLBACK')
                return False
            progress.status = GenerationStatus.CANCELLED
            progress.is_generating = False
            progress.step_message = CANCELLED_MESSAGE
            progress.estimated_time_remaining_seconds = 0
            progress.touch()
            conn.execute(
                'UPDATE generation_progress SET status = ?, progress_json = ?, cancel_requested = 1, '
                'updated_at = ? WHERE user_id = ?',
                (progress.status.value, json.dumps(progress.to_dict()), progress.updated_at, str(user_id))
            )
            conn.execute('COMMIT')
        finally:
            conn.close()
        logger.info(f"🛑 Cancel requested for user {user_id}")
        return True

    def is_cancel_requested(self, user_id: str) -> bool:
        conn = self._get_db()
        row = conn.execute(
            'SELECT cancel_requested FROM generation_progress WHERE user_id = ?', (str(user_id),)
        ).fetchone()
        conn.close()
        return bool(row and row['cancel_requested'])

    def delete_progress(self, user_id: str) -> bool:
        conn = self._get_db()
        cursor = conn.execute('DELETE FROM generation_progress WHERE user_id = ?', (str(user_id),))
        conn.close()
        return cursor.rowcount > 0

    def repair_stale_runs(self, max_age_minutes: int = None) -> int:
        """
        Mark runs stuck in 'running' longer than the cutoff as errored.

        Returns count repaired.
        """
        if max_age_minutes is None:
            max_age_minutes = get_config_value("generation", "stale_run_minutes", 15)
        cutoff = (datetime.now() - timedelta(minutes=max_age_minutes)).isoformat()

        conn = self._get_db()
        rows = conn.execute(
            'SELECT user_id, progress_json FROM generation_progress WHERE status = ? AND updated_at < ?',
            (GenerationStatus.RUNNING.value, cutoff)
        ).fetchall()
        conn.close()

        for row in rows:
            progress = GenerationProgress.from_dict(json.loads(row['progress_json']))
            progress.status = GenerationStatus.ERROR
            progress.is_generating = False
            progress.error = STALE_RUN_MESSAGE
            progress.estimated_time_remaining_seconds = 0
            progress.touch()
            self.save_progress(row['user_id'], progress)
            logger.warning(f"⚠️  Reset stale plan generation for user {row['user_id']}")
        return len(rows)

    # =========================================================================
    # Fitness plans
    # =========================================================================

    def save_plan(self, user_id: str, plan: Dict[str, Any], summary: Dict[str, Any] = None,
                  reason: str = "Replaced by a newly generated plan") -> int:
        """Store a plan as the user's active one, deactivating older plans. Returns plan id."""
        now = datetime.now().isoformat()
        conn = self._get_db()
        try:
            conn.execute('BEGIN IMMEDIATE')
            conn.execute(
                'UPDATE fitness_plans SET is_active = 0, deactivated_at = ?, deactivation_reason = ? '
                'WHERE user_id = ? AND is_active = 1',
                (now, reason, str(user_id))
            )
            cursor = conn.execute(
                'INSERT INTO fitness_plans (user_id, plan_json, summary_json, is_active, created_at) '
                'VALUES (?, ?, ?, 1, ?)',
                (str(user_id), json.dumps(plan), json.dumps(summary) if summary is not None else None, now)
            )
            conn.execute('COMMIT')
            plan_id = cursor.lastrowid
        finally:
            conn.close()
        logger.info(f"💾 Saved plan {plan_id} for user {user_id}")
        return plan_id

    def get_active_plan(self, user_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_db()
        row = conn.execute(
            'SELECT * FROM fitness_plans WHERE user_id = ? AND is_active = 1 ORDER BY id DESC LIMIT 1',
            (str(user_id),)
        ).fetchone()
        conn.close()
        if not row:
            return None
        return {
            "id": row['id'],
            "userId": row['user_id'],
            "plan": json.loads(row['plan_json']),
            "summary": json.loads(row['summary_json']) if row['summary_json'] else None,
            "createdAt": row['created_at'],
        }
