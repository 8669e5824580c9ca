import sqlite3
from pathlib import Path
from contextlib import contextmanager
from faceattend.config.paths import DB_PATH
from faceattend.config.settings import DB_TIMEOUT
from faceattend.utils.logging import setup_logger

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
REQUIRED_TABLES = ('identities', 'face_descriptors', 'attendance')


class DatabaseManager:
    """
    Owns the SQLite file behind the descriptor store and the attendance log.
    Every call opens its own short-lived connection, so one manager can be
    shared between the capture session and the CLI.
    """

    def __init__(self, db_path=None, timeout=DB_TIMEOUT):
        self.db_path = Path(db_path) if db_path is not None else DB_PATH
        self.timeout = timeout
        self.logger = setup_logger()

    @contextmanager
    def get_connection(self):
        """
        Yield a connection that commits on success and rolls back on error.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            self.logger.error(f"Database error on {self.db_path.name}: {e}")
            raise
        finally:
            conn.close()

    def initialize_db(self):
        """
        Create any missing tables and indexes. Safe to run on an existing file.
        """
        if not SCHEMA_PATH.exists():
            self.logger.error(f"Schema file not found: {SCHEMA_PATH}")
            raise FileNotFoundError(f"Schema file not found: {SCHEMA_PATH}")

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.get_connection() as conn:
            conn.executescript(SCHEMA_PATH.read_text())
        self.logger.info(f"Database ready at {self.db_path}")

    def execute_query(self, query, params=()):
        with self.get_connection() as conn:
            return conn.execute(query, params).fetchall()

    def execute_update(self, query, params=()):
        """
        Run one write. Returns the last row id (meaningful for INSERT).
        """
        with self.get_connection() as conn:
            return conn.execute(query, params).lastrowid

    def execute_many(self, query, rows):
        """
        Run one write per parameter row inside a single transaction.
        """
        with self.get_connection() as conn:
            conn.executemany(query, rows)

    def missing_tables(self):
        rows = self.execute_query("SELECT name FROM sqlite_master WHERE type='table'")
        present = {row["name"] for row in rows}
        return [table for table in REQUIRED_TABLES if table not in present]

    def table_exists(self, table_name):
        rows = self.execute_query(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table_name,)
        )
        return bool(rows)

    def is_initialized(self):
        return not self.missing_tables()
