import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL env var not set")

# Concurrent cascades rewriting the same LO/RO rows must fail with a
# serialization error instead of silently overwriting each other.
ISOLATION_LEVEL = os.getenv("DB_ISOLATION_LEVEL", "SERIALIZABLE")

class Base(DeclarativeBase):
    pass

engine = create_engine(DATABASE_URL, future=True, pool_pre_ping=True, isolation_level=ISOLATION_LEVEL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(bind=None):
    # tables register themselves on Base.metadata when the models are imported
    import outcomes.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
