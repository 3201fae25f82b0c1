from layered_rag.db.base import Base
from layered_rag.db.session import SessionLocal, engine, get_db, init_models

__all__ = ["Base", "SessionLocal", "engine", "get_db", "init_models"]
