from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from ficsync.core.config import settings

connect_args = {}
_backend = make_url(settings.DATABASE_URL).get_backend_name()
if _backend.startswith("postgresql"):
    connect_args["options"] = "-c timezone=utc"
elif _backend == "sqlite":
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args
)

if _backend == "sqlite":

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, _record):
        # ON DELETE CASCADE is a no-op in SQLite without this pragma
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
