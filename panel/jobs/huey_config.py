"""Huey configuration with SQLite backend."""
from pathlib import Path

from huey import SqliteHuey

from config import STORE_CONFIG

Path(STORE_CONFIG["huey_db"]).parent.mkdir(parents=True, exist_ok=True)

# SQLite-backed Huey instance
huey = SqliteHuey(filename=STORE_CONFIG["huey_db"])
