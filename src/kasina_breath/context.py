"""
Application context: one owner for the database, the belt and the session
manager, so nothing lives in module globals.
"""

import logging

from typing import Any

from kasina_breath.config import Settings, load_settings
from kasina_breath.database.session import Database
from kasina_breath.database.store import CalibrationProfileStore, DatabaseRecoveryStore
from kasina_breath.device.connection import ConnectionManager
from kasina_breath.sessions.api import SessionApiClient
from kasina_breath.sessions.recovery import SessionRecoveryManager
from kasina_breath.signal.monitor import BreathMonitor

logger = logging.getLogger(__name__)


class KasinaBreathContext:
    """
    Builds and owns every long-lived component.

    Example:
        >>> async with KasinaBreathContext() as ctx:
        ...     await ctx.recovery.check_for_recovery()
        ...     await ctx.connection.connect()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        database: Database | None = None,
        api: Any = None,
        connection: ConnectionManager | None = None,
    ):
        """
        Args:
            settings: Settings to use; loads the user's config when None
            database: Database to use instead of the configured path
            api: Session API client (anything with async save_session)
            connection: Connection manager to use instead of a bleak one
        """
        self.settings = settings or load_settings()
        self.database = database or Database(self.settings.storage.database_path)
        self.api = api or SessionApiClient(self.settings.api)
        self._connection = connection
        self._monitor: BreathMonitor | None = None

        self.recovery_store: DatabaseRecoveryStore | None = None
        self.profile_store: CalibrationProfileStore | None = None
        self._recovery: SessionRecoveryManager | None = None

    def open(self) -> "KasinaBreathContext":
        """Open the database and build the session manager. Idempotent."""
        if self._recovery is not None:
            return self

        self.database.open()
        self.recovery_store = DatabaseRecoveryStore(self.database)
        self.profile_store = CalibrationProfileStore(self.database)
        self._recovery = SessionRecoveryManager(
            self.recovery_store, self.api, self.settings.recovery
        )
        logger.debug(f"Context opened (database: {self.database.database_path})")
        return self

    @property
    def recovery(self) -> SessionRecoveryManager:
        if self._recovery is None:
            raise RuntimeError("Context not open. Call open() first.")
        return self._recovery

    @property
    def connection(self) -> ConnectionManager:
        if self._connection is None:
            self._connection = ConnectionManager(self.settings.device)
        return self._connection

    @property
    def monitor(self) -> BreathMonitor:
        if self._monitor is None:
            self._monitor = BreathMonitor(
                self.connection, self.settings, profile_store=self.profile_store
            )
        return self._monitor

    def close(self) -> None:
        """Stop timers and release the database. The belt is not touched."""
        if self._recovery is not None:
            self._recovery.stop()
        if self._monitor is not None:
            self._monitor.close()
            self._monitor = None
        self.database.close()
        self._recovery = None

    async def aclose(self) -> None:
        """Disconnect the belt, then close()."""
        if self._connection is not None:
            await self._connection.disconnect()
        self.close()

    async def __aenter__(self) -> "KasinaBreathContext":
        return self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
