"""Client for the session persistence API."""

import asyncio
import json
import logging
import urllib.error
import urllib.request

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from kasina_breath import __version__
from kasina_breath.config import ApiSettings
from kasina_breath.constants import ApiConstants as AC
from kasina_breath.constants import SECONDS_PER_MINUTE, KasinaType

logger = logging.getLogger(__name__)


def session_display_name(kasina_type: KasinaType | str, duration_seconds: int) -> str:
    """
    Human-readable session label, e.g. "Breath (5-minutes)".

    Args:
        kasina_type: Practice type
        duration_seconds: Session length, expected in whole minutes

    Returns:
        Capitalized type followed by the minute count
    """
    value = KasinaType(kasina_type).value
    minutes = duration_seconds // SECONDS_PER_MINUTE
    minute_text = "minute" if minutes == 1 else "minutes"
    return f"{value[:1].upper()}{value[1:].lower()} ({minutes}-{minute_text})"


def build_session_payload(
    kasina_type: KasinaType | str,
    duration_seconds: int,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Build the JSON body for POST /sessions."""
    kasina_type = KasinaType(kasina_type)
    when = timestamp or datetime.now(UTC)
    return {
        "kasinaType": kasina_type.value,
        "kasinaName": session_display_name(kasina_type, duration_seconds),
        "duration": int(duration_seconds),
        "timestamp": when.isoformat().replace("+00:00", "Z"),
    }


class SessionApiClient:
    """
    Posts completed sessions to the API.

    Saves are serialized: one request in flight at a time. The HTTP call runs
    on a worker thread so the event loop keeps streaming belt data.
    """

    def __init__(
        self,
        settings: ApiSettings | None = None,
        *,
        opener: Callable[..., Any] = urllib.request.urlopen,
    ):
        self.settings = settings or ApiSettings()
        self._opener = opener
        self._lock = asyncio.Lock()

    @property
    def sessions_url(self) -> str:
        return self.settings.base_url.rstrip("/") + AC.SESSIONS_PATH

    def _post(self, payload: dict[str, Any]) -> bool:
        req = urllib.request.Request(
            self.sessions_url,
            data=json.dumps(payload).encode(),
            method="POST",
        )
        req.add_header("Content-Type", "application/json")
        req.add_header("User-Agent", f"kasina-breath/{__version__}")
        if self.settings.token:
            req.add_header("Authorization", f"Bearer {self.settings.token}")

        try:
            with self._opener(req, timeout=self.settings.timeout) as response:
                status = response.status
        except urllib.error.HTTPError as e:
            logger.warning(f"Session save rejected: HTTP {e.code}")
            return False
        except (urllib.error.URLError, OSError) as e:
            logger.warning(f"Session save failed: {e}")
            return False

        if not 200 <= status < 300:
            logger.warning(f"Session save rejected: HTTP {status}")
            return False
        return True

    async def save_session(
        self,
        kasina_type: KasinaType | str,
        duration_seconds: int,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Save one session.

        Args:
            kasina_type: Practice type
            duration_seconds: Rounded duration in seconds
            timestamp: When the session happened (defaults to now)

        Returns:
            True on a 2xx response; False on any HTTP, network or timeout error
        """
        payload = build_session_payload(kasina_type, duration_seconds, timestamp)
        async with self._lock:
            saved = await asyncio.to_thread(self._post, payload)

        if saved:
            logger.info(f"Saved session: {payload['kasinaName']}")
        return saved
