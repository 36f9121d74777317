"""Database layer for kasina-breath."""

from kasina_breath.database.session import Database
from kasina_breath.database.store import CalibrationProfileStore, DatabaseRecoveryStore

__all__ = ["CalibrationProfileStore", "Database", "DatabaseRecoveryStore"]
