"""Simple migration runner for SQLite using the SQL files in migrations/"""
from pathlib import Path
import logging
import sqlite3

from gradtracker.config import settings

BASE = Path(__file__).parent
MIGRATIONS = sorted((BASE / "migrations").glob("*.sql"))
logger = logging.getLogger("gradtracker.migrations")


def sqlite_path(url: str) -> Path:
    """Return the file path of a `sqlite:///...` URL."""
    prefix = "sqlite:///"
    if not url.startswith(prefix):
        raise ValueError(f"migrations only support SQLite URLs, got {url!r}")
    return Path(url[len(prefix):])


def run(db_path: Path = None):
    """Execute SQL migration files against the configured SQLite database.

    The function applies every `migrations/*.sql` file in lexical
    order. The scripts use `IF NOT EXISTS`, so running them twice is
    harmless.
    """
    db_path = db_path or sqlite_path(settings.DATABASE_URL)
    logger.info("using database %s", db_path)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for m in MIGRATIONS:
            logger.info("applying %s", m.name)
            cur.executescript(m.read_text(encoding="utf-8"))
        conn.commit()
    finally:
        conn.close()
    logger.info("migrations applied")


if __name__ == '__main__':
    logging.basicConfig(level="INFO")
    run()
