# ============================================================
# Core DB connection
# ============================================================
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from procurement.domain.requests.models import Base


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections are shared across threads."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One connection, otherwise every session sees a new empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def make_session_factory(database_url: str) -> sessionmaker:
    engine = make_engine(database_url)

    # Create tables
    Base.metadata.create_all(bind=engine)

    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
