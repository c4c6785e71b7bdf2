"""Create the ledger tables in PostgreSQL.

Every statement in ``schema.sql`` is idempotent, so running this against an
existing database only adds what is missing.
"""

from __future__ import annotations

import logging
from pathlib import Path
import re
from typing import Any

from matchmaker.backend.config import load_settings


logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_TABLE_PATTERN = re.compile(r"CREATE TABLE IF NOT EXISTS (\w+)", re.IGNORECASE)


def load_schema() -> str:
    return SCHEMA_PATH.read_text(encoding="utf-8")


def schema_tables(schema_sql: str) -> list[str]:
    return _TABLE_PATTERN.findall(schema_sql)


def apply_schema(conn: Any, schema_sql: str | None = None) -> list[str]:
    """Execute the schema on an open connection and commit; return table names."""
    schema_sql = schema_sql if schema_sql is not None else load_schema()
    with conn.cursor() as cur:
        cur.execute(schema_sql)
    conn.commit()
    return schema_tables(schema_sql)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    if not settings.database_url:
        raise RuntimeError("MATCHMAKER_DATABASE_URL is required for migration")

    import psycopg

    with psycopg.connect(settings.database_url) as conn:
        tables = apply_schema(conn)
    logger.info("schema applied: %s", ", ".join(tables))


if __name__ == "__main__":
    main()
