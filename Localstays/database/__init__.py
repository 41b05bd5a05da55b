from .db_manager import DBManager
from .session import SessionLocal, get_db

__all__ = ["DBManager", "SessionLocal", "get_db"]
