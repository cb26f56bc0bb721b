from .sqlite_storage import SQLiteStorage

__all__ = ['SQLiteStorage']
