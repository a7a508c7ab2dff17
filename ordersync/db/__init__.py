from .session import build_engine, get_session, init_db, make_session_factory

__all__ = ["build_engine", "get_session", "init_db", "make_session_factory"]
