from .session import Base, SessionLocal, engine, get_db, make_engine
from . import models  # noqa: F401

__all__ = ["Base", "SessionLocal", "engine", "get_db", "make_engine", "models"]
