from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker

from backend.app.core.config import settings


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    # SQLite ignore les FOREIGN KEY (RESTRICT / SET NULL) sans ce pragma
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
if settings.DATABASE_URL.startswith("sqlite"):
    enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
