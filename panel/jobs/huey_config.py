"""Huey configuration with SQLite backend."""
from huey import SqliteHuey

from config import DATA_DIR, HUEY_DB_PATH

DATA_DIR.mkdir(parents=True, exist_ok=True)

# SQLite-backed Huey instance; run the consumer with:
#   huey_consumer panel.jobs.huey
huey = SqliteHuey(name='meal-plans', filename=str(HUEY_DB_PATH))
