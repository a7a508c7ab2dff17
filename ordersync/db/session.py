from contextlib import contextmanager
import os
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")


def build_engine(database_url: str):
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        db_path = database_url.split("sqlite:///")[-1]
        Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory database
        return create_engine(
            database_url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url, future=True, pool_pre_ping=True)


def make_session_factory(bind):
    """Return a ``get_session``-style context manager factory bound to ``bind``."""
    maker = sessionmaker(bind=bind, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def session_scope():
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


def init_db(bind) -> None:
    from ..models import Base

    Base.metadata.create_all(bind)


engine = build_engine(DATABASE_URL)
get_session = make_session_factory(engine)
