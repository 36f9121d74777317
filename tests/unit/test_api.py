"""Unit tests for the session API client."""

import asyncio
import json
import threading
import urllib.error

from datetime import UTC, datetime

import pytest

from kasina_breath.config import ApiSettings
from kasina_breath.constants import KasinaType
from kasina_breath.sessions.api import (
    SessionApiClient,
    build_session_payload,
    session_display_name,
)

WHEN = datetime(2025, 10, 1, 7, 0, 0, tzinfo=UTC)


class FakeResponse:
    def __init__(self, status: int):
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class RecordingOpener:
    """Stands in for urllib.request.urlopen."""

    def __init__(self, status: int = 201, error: BaseException | None = None):
        self.status = status
        self.error = error
        self.requests = []
        self.timeouts = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, request, timeout=None):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.requests.append(request)
            self.timeouts.append(timeout)
            if self.error is not None:
                raise self.error
            return FakeResponse(self.status)
        finally:
            with self._lock:
                self.active -= 1


class TestDisplayName:
    @pytest.mark.parametrize(
        "kasina,seconds,expected",
        [
            (KasinaType.BREATH, 300, "Breath (5-minutes)"),
            (KasinaType.BREATH, 60, "Breath (1-minute)"),
            ("white-a", 600, "White-a (10-minutes)"),
            (KasinaType.OM, 0, "Om (0-minutes)"),
        ],
    )
    def test_names(self, kasina, seconds, expected):
        assert session_display_name(kasina, seconds) == expected


class TestBuildPayload:
    def test_payload_fields(self):
        payload = build_session_payload(KasinaType.BREATH, 300, WHEN)

        assert payload == {
            "kasinaType": "breath",
            "kasinaName": "Breath (5-minutes)",
            "duration": 300,
            "timestamp": "2025-10-01T07:00:00Z",
        }

    def test_default_timestamp_is_utc_now(self):
        payload = build_session_payload(KasinaType.BREATH, 60)

        assert payload["timestamp"].endswith("Z")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            build_session_payload("nope", 60, WHEN)


class TestSessionApiClient:
    def test_posts_json(self):
        opener = RecordingOpener()
        client = SessionApiClient(
            ApiSettings(base_url="http://example.test/api/", timeout=3.0), opener=opener
        )

        saved = asyncio.run(client.save_session(KasinaType.BREATH, 300, WHEN))

        assert saved is True
        request = opener.requests[0]
        assert request.full_url == "http://example.test/api/sessions"
        assert request.get_method() == "POST"
        assert request.get_header("Content-type") == "application/json"
        assert request.get_header("User-agent").startswith("kasina-breath/")
        assert request.get_header("Authorization") is None
        assert json.loads(request.data) == build_session_payload(
            KasinaType.BREATH, 300, WHEN
        )
        assert opener.timeouts == [3.0]

    def test_bearer_token(self):
        opener = RecordingOpener()
        client = SessionApiClient(ApiSettings(token="secret"), opener=opener)

        asyncio.run(client.save_session(KasinaType.BREATH, 60, WHEN))

        assert opener.requests[0].get_header("Authorization") == "Bearer secret"

    def test_http_error_returns_false(self):
        error = urllib.error.HTTPError(
            "http://example.test/api/sessions", 500, "Server Error", {}, None
        )
        client = SessionApiClient(opener=RecordingOpener(error=error))

        assert asyncio.run(client.save_session(KasinaType.BREATH, 60, WHEN)) is False

    def test_network_error_returns_false(self):
        opener = RecordingOpener(error=urllib.error.URLError("connection refused"))
        client = SessionApiClient(opener=opener)

        assert asyncio.run(client.save_session(KasinaType.BREATH, 60, WHEN)) is False

    def test_timeout_returns_false(self):
        client = SessionApiClient(opener=RecordingOpener(error=TimeoutError("timed out")))

        assert asyncio.run(client.save_session(KasinaType.BREATH, 60, WHEN)) is False

    @pytest.mark.parametrize("status,expected", [(200, True), (204, True), (302, False)])
    def test_status_codes(self, status, expected):
        client = SessionApiClient(opener=RecordingOpener(status=status))

        assert asyncio.run(client.save_session(KasinaType.BREATH, 60, WHEN)) is expected

    def test_saves_are_serialized(self):
        opener = RecordingOpener()
        client = SessionApiClient(opener=opener)

        async def run():
            return await asyncio.gather(
                *(client.save_session(KasinaType.BREATH, 60 * i, WHEN) for i in range(1, 6))
            )

        results = asyncio.run(run())

        assert results == [True] * 5
        assert len(opener.requests) == 5
        assert opener.max_active == 1
