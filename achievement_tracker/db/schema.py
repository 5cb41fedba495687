from __future__ import annotations

from achievement_tracker.db.postgres import _import_psycopg

DOCUMENT_STORE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS achievements (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        category TEXT NOT NULL,
        deleted_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        document JSONB NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS achievements_student_created_idx ON achievements (student_id, created_at)",
)

# achievement_id deliberately carries no foreign key: the achievement lives in another store
REFERENCE_STORE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS achievement_references (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        achievement_id TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('draft', 'submitted', 'verified', 'rejected', 'deleted')),
        submitted_at TIMESTAMPTZ NULL,
        verified_at TIMESTAMPTZ NULL,
        verified_by TEXT NULL,
        rejection_note TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS achievement_references_student_idx ON achievement_references (student_id, created_at)",
    "CREATE INDEX IF NOT EXISTS achievement_references_pointer_idx ON achievement_references (achievement_id)",
    "CREATE INDEX IF NOT EXISTS achievement_references_status_idx ON achievement_references (status)",
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS notifications_user_created_idx ON notifications (user_id, created_at DESC)",
)

STORES: dict[str, tuple[str, ...]] = {
    "document": DOCUMENT_STORE_DDL,
    "reference": REFERENCE_STORE_DDL,
}


class PostgresSchemaManager:
    """Create the tables one store owns; identity tables are managed elsewhere."""

    def __init__(self, dsn: str, *, store: str) -> None:
        if not dsn.strip():
            raise ValueError("postgres dsn must not be empty")
        if store not in STORES:
            raise ValueError(f"unknown store: {store}")
        self._dsn = dsn.strip()
        self._store = store

    def apply(self) -> int:
        psycopg = _import_psycopg()
        statements = STORES[self._store]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                for statement in statements:
                    cur.execute(statement)
            conn.commit()
        return len(statements)
