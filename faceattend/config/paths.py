import os
from pathlib import Path

# FACEATTEND_HOME relocates data and logs, e.g. for an installed package
BASE_DIR = Path(os.environ.get("FACEATTEND_HOME", Path(__file__).resolve().parents[2]))
DATA_DIR = BASE_DIR / "data"
DB_DIR = DATA_DIR / "database"
LOG_DIR = BASE_DIR / "logs"

DB_PATH = DB_DIR / "attendance.db"

DB_DIR.mkdir(parents=True, exist_ok=True)
LOG_DIR.mkdir(parents=True, exist_ok=True)
