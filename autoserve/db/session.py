from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from autoserve.core.config import settings


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with backend-specific connection settings."""
    backend = make_url(database_url).get_backend_name()
    connect_args = {}
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30

    db_engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)

    if backend == "sqlite":
        @event.listens_for(db_engine, "connect")
        def _configure_sqlite_connection(dbapi_connection, connection_record):
            # SQLAlchemy emits BEGIN itself so SAVEPOINT nests correctly
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(db_engine, "begin")
        def _begin_immediate(conn):
            # Writers queue on the busy timeout instead of failing on lock upgrade
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return db_engine


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
