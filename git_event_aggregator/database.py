"""
Database Module

This module handles database connections and provides session management.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker

from git_event_aggregator.errors import ConstraintViolationError, StoreUnavailableError
from git_event_aggregator.models import Base

logger = logging.getLogger(__name__)

# Cache for database engines
_engines = {}


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def get_engine(database_url):
    """
    Get or create a database engine for the given URL.

    SQLite connections get foreign key enforcement switched on, which
    the cascading deletes rely on, and WAL mode so that readers do not
    block the sync writers.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Engine instance
    """
    if database_url not in _engines:
        is_sqlite = database_url.startswith("sqlite")
        engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=not is_sqlite,
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        if is_sqlite:
            event.listen(engine, "connect", _set_sqlite_pragma)
        _engines[database_url] = engine
    return _engines[database_url]


def dispose_engines():
    """Close all pooled connections; called on application shutdown."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()


def init_db(engine):
    """Create all tables that do not exist yet."""
    with engine.begin() as conn:
        Base.metadata.create_all(bind=conn)
    logger.info(f"Database initialized at {engine.url.render_as_string(hide_password=True)}")


@contextmanager
def get_sync_session(engine):
    """
    Get a database session for the given engine.

    Args:
        engine: SQLAlchemy Engine instance

    Yields:
        Session instance
    """
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope(engine, session=None):
    """
    Run a unit of work in a transaction.

    When ``session`` is given the work joins the caller's transaction and
    nothing is committed here. Otherwise a new session is opened and
    committed on success, rolled back on failure. SQLAlchemy errors are
    translated into the package's error taxonomy at this boundary.
    """
    if session is not None:
        yield session
        return

    with get_sync_session(engine) as session:
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConstraintViolationError(str(e.orig)) from e
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            raise StoreUnavailableError(str(e.orig)) from e
        except BaseException:
            session.rollback()
            raise


def insert_if_absent(session, model, values, conflict_columns):
    """
    Insert a row unless it collides with a unique constraint.

    The conflict is resolved by the database in a single statement, so
    concurrent callers inserting the same key end up with exactly one row.

    Args:
        session: Session whose transaction the insert joins
        model: Mapped class to insert into
        values: Column values of the new row
        conflict_columns: Columns of the unique constraint
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = (
            sqlite_insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=conflict_columns)
        )
    elif dialect == "postgresql":
        stmt = (
            postgresql_insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=conflict_columns)
        )
    elif dialect in ("mysql", "mariadb"):
        stmt = insert(model).values(**values).prefix_with("IGNORE")
    else:
        raise NotImplementedError(f"No conflict-tolerant insert for dialect '{dialect}'")
    session.execute(stmt)
