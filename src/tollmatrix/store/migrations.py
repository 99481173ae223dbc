"""
Schema setup for the toll registry database.

schema.sql is idempotent and stamps ``schema_version``. A database written by
a newer tollmatrix is refused rather than silently downgraded.
"""

import logging
import sqlite3
from pathlib import Path

from ..exceptions import SchemaVersionError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
SCHEMA_VERSION = 1


def get_current_version(conn: sqlite3.Connection) -> int:
    """Highest applied schema version, 0 for a fresh database."""
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    except sqlite3.OperationalError:
        # No schema_version table yet
        return 0
    return row[0] or 0


def apply_schema(db_path: Path) -> int:
    """Create missing tables and return the resulting schema version.

    Raises:
        SchemaVersionError: If the database is newer than SCHEMA_VERSION
    """
    conn = sqlite3.connect(db_path)
    try:
        found = get_current_version(conn)
        if found > SCHEMA_VERSION:
            raise SchemaVersionError(
                f"{db_path} has schema v{found}; this tollmatrix supports up to v{SCHEMA_VERSION}"
            )
        conn.executescript(SCHEMA_PATH.read_text())
        conn.commit()
        return get_current_version(conn)
    finally:
        conn.close()


def init_database(db_path: Path) -> int:
    """Create the database file (and parent directories) with the schema.

    Returns:
        Schema version after initialization
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    version = apply_schema(db_path)
    logger.info(f"Database initialized: {db_path} (schema v{version})")
    return version
