"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides fast settings, fake camera/decoder/driver doubles, a scripted
booking API on httpx.MockTransport, and the FastAPI test client.

==============================================================================
"""

import asyncio
import threading
import time
from typing import Any, Dict, Generator, List, Optional, Tuple

import httpx
import numpy as np
import pytest
from fastapi.testclient import TestClient

from checkin_kiosk.config import Settings
from checkin_kiosk.core import SessionStore, exceptions
from checkin_kiosk.main import app
from checkin_kiosk.scanner import FrameSource, ScannerState
from checkin_kiosk.services import CinemaApiClient, CheckInCoordinator, KioskService
from checkin_kiosk.services.kiosk_service import get_kiosk_service


API_ROOT = "http://booking.test"
CHECKIN = "/api/v1/bookings/checkin-by-qr"


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ============================================================================
# SETTINGS FIXTURES
# ============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with no display delays and a private log directory."""
    return Settings(
        _env_file=None,
        api_base_url=API_ROOT,
        auth_token=None,
        auth_token_file=str(tmp_path / "token"),
        scan_fps=60,
        result_display_seconds=0,
        restart_settle_seconds=0,
        rate_limit_default_delay_seconds=5,
        toast_throttle_seconds=5,
        log_directory=str(tmp_path / "logs"),
    )


@pytest.fixture
def session_store(settings: Settings) -> SessionStore:
    store = SessionStore(settings)
    store.set_token("test-token")
    return store


# ============================================================================
# CAMERA DOUBLES
# ============================================================================

class FakeFrameSource(FrameSource):
    """Frame source counting acquisitions and releases."""

    name = "fake"

    def __init__(self, frames: Optional[List[Any]] = None, fail_open: bool = False,
                 reopen_delay: float = 0.0):
        self.frames = list(frames or [])
        self.fail_open = fail_open
        self.reopen_delay = reopen_delay
        self.opening = False
        self.opens = 0
        self.releases = 0
        self._open = False

    def open(self) -> None:
        if self.fail_open:
            raise exceptions.camera_unavailable("permission denied")
        if self.opens and self.reopen_delay:
            self.opening = True
            time.sleep(self.reopen_delay)
            self.opening = False
        self.opens += 1
        self._open = True

    def read(self):
        if not self.frames:
            return None
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame

    def release(self) -> None:
        if self._open:
            self.releases += 1
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open


class FakeDecoder:
    """Decoder returning scripted payload lists, one per frame."""

    def __init__(self, results: Optional[List[List[str]]] = None):
        self.results = list(results or [])
        self.threads = set()

    def decode(self, frame) -> List[str]:
        self.threads.add(threading.get_ident())
        if not self.results:
            return []
        return self.results.pop(0)


class FakeDriver:
    """Scan driver double recording the coordinator's calls."""

    def __init__(self):
        self.state = ScannerState.UNINITIALIZED
        self.starts = 0
        self.stops = 0
        self.teardowns = 0
        self.fail_initialize = False
        self.fail_start = False

    async def initialize(self, source, on_decode=None, on_error=None):
        if self.fail_initialize:
            self.state = ScannerState.ERROR
            raise exceptions.camera_unavailable("permission denied")
        self.state = ScannerState.STOPPED
        if on_decode is not None:
            await self.start(on_decode)

    async def start(self, on_decode):
        if self.fail_start:
            raise exceptions.scanner_not_ready(self.state.value)
        self.starts += 1
        self.state = ScannerState.SCANNING

    async def stop(self):
        self.stops += 1
        if self.state == ScannerState.SCANNING:
            self.state = ScannerState.STOPPED

    async def teardown(self):
        self.teardowns += 1
        self.state = ScannerState.UNINITIALIZED


def blank_frame() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


# ============================================================================
# BOOKING API DOUBLE
# ============================================================================

class FakeBookingApi:
    """
    Scripted booking API served through httpx.MockTransport.

    Each route holds a list of replies; the last reply repeats once the
    others are used up. A reply is (status, json, headers) or an exception.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.gate: Optional[asyncio.Event] = None

    def add(self, method: str, path: str, status: int = 200, json: Any = None,
            headers: Optional[Dict[str, str]] = None, text: Optional[str] = None) -> None:
        self.routes.setdefault((method, path), []).append((status, json, headers, text))

    def fail(self, method: str, path: str, error: Exception) -> None:
        self.routes.setdefault((method, path), []).append(error)

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.gate is not None:
            await self.gate.wait()

        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"message": "Not found"})

        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply

        status, body, headers, text = reply
        if text is not None:
            return httpx.Response(status, text=text, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def booking_api() -> FakeBookingApi:
    return FakeBookingApi()


@pytest.fixture
async def api_client(settings: Settings, booking_api: FakeBookingApi):
    client = CinemaApiClient(settings, transport=booking_api.transport)
    yield client
    await client.aclose()


# ============================================================================
# COORDINATOR FIXTURES
# ============================================================================

class Recorder:
    """Collects everything the coordinator reports upward."""

    def __init__(self):
        self.overlays = []
        self.toasts = []
        self.successes = []
        self.sleeps = []

    def overlay(self, overlay) -> None:
        self.overlays.append(overlay)

    def toast(self, level: str, message: str, key: str) -> None:
        self.toasts.append((level, message, key))

    def success(self, data) -> None:
        self.successes.append(data)

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    @property
    def messages(self) -> List[str]:
        return [o.message for o in self.overlays]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def make_coordinator(settings, api_client, session_store, fake_driver, recorder):
    """Build a coordinator wired to the fakes for a given scan context."""
    def factory(context=None) -> CheckInCoordinator:
        return CheckInCoordinator(
            fake_driver,
            api_client,
            session_store,
            context=context,
            on_successful_scan=recorder.success,
            settings=settings,
            on_overlay=recorder.overlay,
            on_toast=recorder.toast,
            retry_sleep=recorder.sleep,
        )
    return factory


# ============================================================================
# APPLICATION FIXTURES
# ============================================================================

@pytest.fixture
def frame_sources() -> List[FakeFrameSource]:
    """Sources handed out to new sessions, in order; a fresh one when empty."""
    return []


@pytest.fixture
def kiosk(settings, booking_api, frame_sources) -> KioskService:
    def source_factory(kind: str) -> FrameSource:
        return frame_sources.pop(0) if frame_sources else FakeFrameSource()

    return KioskService(settings, transport=booking_api.transport, source_factory=source_factory)


@pytest.fixture
def client(kiosk: KioskService) -> Generator[TestClient, None, None]:
    """Create test client with the kiosk service override."""
    app.dependency_overrides[get_kiosk_service] = lambda: kiosk

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(kiosk.shutdown)

    app.dependency_overrides.clear()
