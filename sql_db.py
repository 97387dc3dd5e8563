from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from config import Config
from models import Base

# Bound by init_db(); the DB URL comes from the app config
# (SQLite locally, Cloud SQL in production)
engine = None

SessionLocal = sessionmaker(autoflush=False, autocommit=False, future=True)


def _sqlite_pragmas(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def init_db(db_url: str | None = None):
    global engine

    db_url = db_url or Config.SQLALCHEMY_DATABASE_URI
    engine = create_engine(db_url, echo=False, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _sqlite_pragmas)

    SessionLocal.configure(bind=engine)

    # Create tables if they don't exist
    Base.metadata.create_all(engine)
    return engine
