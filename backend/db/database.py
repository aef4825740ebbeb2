import logging

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)

PROGRESS_UNIQUE_INDEX = "idx_daily_progress_unique_item"

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)


def install_sqlite_pragmas(target_engine) -> None:
    if target_engine.dialect.name != "sqlite":
        return

    # Enable WAL mode for better concurrent read performance
    @event.listens_for(target_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        _ = connection_record
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


install_sqlite_pragmas(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_startup_migrations(target_engine=None) -> None:
    """Apply lightweight schema fixes for existing databases."""
    bind = target_engine or engine
    inspector = inspect(bind)

    def _table_columns(table_name: str) -> set[str]:
        try:
            return {col["name"] for col in inspector.get_columns(table_name)}
        except Exception:
            return set()

    user_settings_columns = _table_columns("user_settings")
    progress_columns = _table_columns("daily_progress")
    if not user_settings_columns and not progress_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if user_settings_columns and "reminders_enabled" not in user_settings_columns:
        alter_statements.append("ALTER TABLE user_settings ADD COLUMN reminders_enabled BOOLEAN DEFAULT 1")
    if progress_columns:
        if "notes" not in progress_columns:
            alter_statements.append("ALTER TABLE daily_progress ADD COLUMN notes TEXT DEFAULT ''")
        if "time_spent" not in progress_columns:
            alter_statements.append("ALTER TABLE daily_progress ADD COLUMN time_spent INTEGER DEFAULT 0")

    with bind.begin() as conn:
        for stmt in alter_statements:
            conn.execute(text(stmt))

    if not progress_columns:
        return

    existing_indexes = {idx.get("name") for idx in inspector.get_indexes("daily_progress")}
    if PROGRESS_UNIQUE_INDEX in existing_indexes:
        return

    # Legacy databases predate the unique index and may hold duplicate rows
    # from racing syncs; they must be collapsed before the index can be built.
    from services.progress_sync_service import collapse_duplicate_progress

    factory = sessionmaker(autocommit=False, autoflush=False, bind=bind)
    db = factory()
    try:
        removed = collapse_duplicate_progress(db)
        db.commit()
    finally:
        db.close()
    if removed:
        logger.info("Removed %s duplicate daily_progress rows before indexing", removed)

    with bind.begin() as conn:
        conn.execute(
            text(
                f"CREATE UNIQUE INDEX IF NOT EXISTS {PROGRESS_UNIQUE_INDEX} "
                "ON daily_progress (user_id, objective_id, progress_date)"
            )
        )
