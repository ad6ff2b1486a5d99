from datetime import datetime, timezone

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from omnigate.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# JSONB on postgres, plain JSON text elsewhere (sqlite in tests)
JSONData = JSON().with_variant(JSONB(), "postgresql")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def upsert_insert(db: Session, model):
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    if dialect_name(db) == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
