"""
==============================================================================
Check-In Coordinator Tests
==============================================================================

Tests for the one-at-a-time check-in cycle: locking, resume, retry,
schedule resolution and teardown.

==============================================================================
"""

import asyncio
import json

import httpx
import pytest

from checkin_kiosk.core import AppException
from checkin_kiosk.scanner import QRScanDriver, ScannerState
from checkin_kiosk.schemas import OverlayVariant, ScanContext
from checkin_kiosk.services.checkin_coordinator import (
    CheckInCoordinator,
    MSG_NETWORK,
    MSG_NETWORK_TOAST,
    MSG_RESTART_FAILED,
    MSG_SUCCESS,
)

from tests.conftest import CHECKIN, FakeDecoder, FakeFrameSource, wait_for


SUCCESS_BODY = {"success": True, "message": "OK", "data": {"booking_id": 55, "seat": "F7"}}


def sent_json(booking_api):
    return [json.loads(request.content) for request in booking_api.calls(CHECKIN)]


class TestHappyPath:
    """Tests for a successful check-in."""

    async def test_successful_check_in(self, make_coordinator, fake_driver, booking_api, recorder):
        """Test success overlay, callback and scanner restart."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))
        await coordinator.start(FakeFrameSource())

        result = await coordinator.on_decode_payload("QR123")

        assert result.success is True
        assert sent_json(booking_api) == [{"qr_code": "QR123", "schedule_id": 7}]
        assert recorder.successes == [SUCCESS_BODY["data"]]
        assert MSG_SUCCESS in recorder.messages
        assert recorder.overlays[-1].variant == OverlayVariant.SUCCESS
        assert fake_driver.stops == 1

        await coordinator.wait_idle()

        assert coordinator.is_processing is False
        assert coordinator.overlay.visible is False
        assert fake_driver.starts == 2
        assert fake_driver.state == ScannerState.SCANNING
        assert coordinator.stats.succeeded == 1

    async def test_payload_is_trimmed(self, make_coordinator, booking_api):
        """Test whitespace around the payload is stripped."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("  QR123 \n")
        await coordinator.wait_idle()

        assert sent_json(booking_api)[0]["qr_code"] == "QR123"

    async def test_processing_toast(self, make_coordinator, booking_api, recorder):
        """Test the operator is told a scan is being processed."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert recorder.toasts[0] == ("info", "Processing...", "processing")

    async def test_success_callback_error_does_not_block_resume(
        self, make_coordinator, fake_driver, booking_api, recorder
    ):
        """Test a failing success callback still ends with a restart."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))
        coordinator._on_successful_scan = lambda data: 1 / 0

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is True
        assert fake_driver.starts == 1
        assert coordinator.is_processing is False


class TestLocking:
    """Tests for at-most-one check-in in flight."""

    async def test_duplicate_payload_is_dropped(self, make_coordinator, booking_api, recorder):
        """Test a payload decoded while processing is dropped, not queued."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        booking_api.gate = asyncio.Event()
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        first = asyncio.create_task(coordinator.on_decode_payload("QR123"))
        await wait_for(lambda: booking_api.calls(CHECKIN))

        assert coordinator.is_processing is True
        assert await coordinator.on_decode_payload("QR123") is None
        assert await coordinator.on_decode_payload("QR999") is None

        booking_api.gate.set()
        await first
        await coordinator.wait_idle()

        assert len(booking_api.calls(CHECKIN)) == 1
        assert len(recorder.successes) == 1
        assert coordinator.stats.dropped == 2
        assert coordinator.stats.scans == 1

    async def test_lock_held_until_overlay_clears(self, settings, make_coordinator, booking_api):
        """Test the lock is released only after the result display delay."""
        settings.result_display_seconds = 0.2
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")

        assert coordinator.is_processing is True
        assert await coordinator.on_decode_payload("QR456") is None

        await coordinator.wait_idle()

        assert coordinator.is_processing is False
        assert len(booking_api.calls(CHECKIN)) == 1

    async def test_next_scan_accepted_after_resume(self, make_coordinator, booking_api):
        """Test a new payload is processed once the cycle finished."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR1")
        await coordinator.wait_idle()
        result = await coordinator.on_decode_payload("QR2")
        await coordinator.wait_idle()

        assert result is not None
        assert [body["qr_code"] for body in sent_json(booking_api)] == ["QR1", "QR2"]


class TestRejections:
    """Tests for failures reported by the booking API."""

    async def test_application_rejection(self, make_coordinator, fake_driver, booking_api, recorder):
        """Test a success=false body shows the server message."""
        booking_api.add(
            "POST", CHECKIN, 422,
            {"success": False, "message": "Ticket already checked in"}
        )
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is False
        assert "Ticket already checked in" in recorder.messages
        assert ("error", "Ticket already checked in", "rejected") in recorder.toasts
        assert recorder.successes == []
        assert coordinator.stats.rejected == 1
        assert fake_driver.starts == 1

    async def test_rejection_without_message(self, make_coordinator, booking_api, recorder):
        """Test a bare success=false falls back to a generic message."""
        booking_api.add("POST", CHECKIN, 200, {"success": False})
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert "Failed" in recorder.messages

    async def test_network_failure(self, make_coordinator, fake_driver, booking_api, recorder):
        """Test a transport error shows a network error and resumes."""
        booking_api.fail("POST", CHECKIN, httpx.ConnectError("connection refused"))
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is False
        assert MSG_NETWORK in recorder.messages
        assert ("error", MSG_NETWORK_TOAST, "network") in recorder.toasts
        assert coordinator.stats.failed == 1
        assert coordinator.is_processing is False
        assert fake_driver.starts == 1

    async def test_malformed_response(self, make_coordinator, booking_api, recorder):
        """Test an HTML error page is treated as a network failure."""
        booking_api.add("POST", CHECKIN, 502, text="<html>Bad Gateway</html>")
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert MSG_NETWORK in recorder.messages

    async def test_missing_token(self, make_coordinator, session_store, fake_driver, booking_api, recorder):
        """Test no request is sent without a session token."""
        session_store.clear()
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is False
        assert result.message == "Login required."
        assert booking_api.requests == []
        assert coordinator.is_processing is False
        assert fake_driver.starts == 1

    async def test_unauthorized_response(self, make_coordinator, booking_api, recorder):
        """Test a 401 asks the operator to log in again."""
        booking_api.add("POST", CHECKIN, 401, {"message": "Unauthenticated."})
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert "Login required." in recorder.messages


class TestRateLimit:
    """Tests for the single retry after HTTP 429."""

    async def test_retry_after_header(self, make_coordinator, booking_api, recorder):
        """Test the retry waits for Retry-After and then succeeds."""
        booking_api.add("POST", CHECKIN, 429, {"message": "Too Many Attempts."}, {"Retry-After": "2"})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is True
        assert recorder.sleeps == [2.0]
        assert len(booking_api.calls(CHECKIN)) == 2
        assert "Rate limited by server. Retrying in 2s" in recorder.messages
        assert recorder.successes == [SUCCESS_BODY["data"]]

    async def test_default_delay_without_header(self, settings, make_coordinator, booking_api, recorder):
        """Test the configured delay is used when Retry-After is missing."""
        booking_api.add("POST", CHECKIN, 429, {"message": "Too Many Attempts."})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert recorder.sleeps == [settings.rate_limit_default_delay_seconds]

    async def test_second_429_gives_up(self, make_coordinator, fake_driver, booking_api, recorder):
        """Test exactly two requests are made when both are rate limited."""
        booking_api.add("POST", CHECKIN, 429, {"message": "Too Many Attempts."})
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is False
        assert len(booking_api.calls(CHECKIN)) == 2
        assert recorder.sleeps == [5]
        assert "Too many requests. Please wait and scan again." in recorder.messages
        assert coordinator.stats.rejected == 1
        assert coordinator.is_processing is False
        assert fake_driver.starts == 1

    async def test_retry_after_is_capped(self, make_coordinator, booking_api, recorder):
        """Test a huge Retry-After waits only the configured maximum."""
        booking_api.add("POST", CHECKIN, 429, {"message": "Too Many Attempts."}, {"Retry-After": "3600"})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert recorder.sleeps == [30.0]
        assert "Rate limited by server. Retrying in 30s" in recorder.messages

    async def test_retry_after_zero_retries_immediately(self, make_coordinator, booking_api, recorder):
        booking_api.add("POST", CHECKIN, 429, {"message": "Too Many Attempts."}, {"Retry-After": "0"})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is True
        assert recorder.sleeps == [0.0]


class TestScheduleResolution:
    """Tests for the schedule id sent with the check-in."""

    async def test_booking_schedule_id(self, make_coordinator, booking_api):
        """Test the booking's own schedule id is used without a search."""
        booking_api.add("GET", "/api/v1/bookings/55", 200, {"data": {"id": 55, "schedule_id": 42}})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(booking_id=55))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert sent_json(booking_api) == [{"qr_code": "QR123", "schedule_id": 42}]
        assert booking_api.calls("/api/v1/schedules") == []

    async def test_schedule_search_fallback(self, make_coordinator, booking_api):
        """Test the first schedule matching date and program is used."""
        booking_api.add(
            "GET", "/api/v1/bookings/55", 200,
            {"data": {"id": 55, "date": "2025-01-15", "program_id": 3}}
        )
        booking_api.add("GET", "/api/v1/schedules", 200, {"data": [{"id": 9}, {"id": 10}]})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(booking_id=55))

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert sent_json(booking_api)[0]["schedule_id"] == 9
        search = booking_api.calls("/api/v1/schedules")[0]
        assert search.url.params["date"] == "2025-01-15"
        assert search.url.params["program_id"] == "3"
        assert search.url.params["paginate"] == "false"

    async def test_failed_lookup_submits_without_schedule(self, make_coordinator, booking_api, recorder):
        """Test a lookup failure does not block the check-in."""
        booking_api.add("GET", "/api/v1/bookings/55", 500, {"message": "Server Error"})
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(booking_id=55))

        result = await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert result.success is True
        assert sent_json(booking_api) == [{"qr_code": "QR123"}]


class TestLifecycle:
    """Tests for mount, unmount and scanner restart failures."""

    async def test_camera_unavailable(self, make_coordinator, fake_driver, recorder):
        """Test a camera failure at start surfaces and leaves ERROR."""
        fake_driver.fail_initialize = True
        coordinator = make_coordinator(ScanContext(schedule_id=7))

        with pytest.raises(AppException) as exc_info:
            await coordinator.start(FakeFrameSource())

        assert exc_info.value.code == "CAMERA_UNAVAILABLE"
        assert coordinator.scanner_state == ScannerState.ERROR
        assert "Camera failed." in recorder.messages

    async def test_teardown_ignores_late_result(self, make_coordinator, fake_driver, booking_api, recorder):
        """Test a response arriving after unmount changes nothing."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        booking_api.gate = asyncio.Event()
        coordinator = make_coordinator(ScanContext(schedule_id=7))
        await coordinator.start(FakeFrameSource())

        in_flight = asyncio.create_task(coordinator.on_decode_payload("QR123"))
        await wait_for(lambda: booking_api.calls(CHECKIN))

        await coordinator.teardown()
        overlays_at_teardown = len(recorder.overlays)

        booking_api.gate.set()
        await in_flight
        await coordinator.wait_idle()

        assert recorder.successes == []
        assert len(recorder.overlays) == overlays_at_teardown
        assert fake_driver.teardowns == 1
        assert fake_driver.starts == 1
        assert fake_driver.state == ScannerState.UNINITIALIZED

    async def test_payload_after_teardown_is_ignored(self, make_coordinator, booking_api):
        """Test no check-in is started once unmounted."""
        coordinator = make_coordinator(ScanContext(schedule_id=7))
        await coordinator.teardown()

        assert await coordinator.on_decode_payload("QR123") is None
        assert booking_api.requests == []

    async def test_restart_failure(self, make_coordinator, fake_driver, booking_api, recorder):
        """Test a failed scanner restart is reported."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        coordinator = make_coordinator(ScanContext(schedule_id=7))
        fake_driver.fail_start = True

        await coordinator.on_decode_payload("QR123")
        await coordinator.wait_idle()

        assert recorder.messages[-1] == MSG_RESTART_FAILED
        assert ("error", MSG_RESTART_FAILED, "restart") in recorder.toasts
        assert coordinator.is_processing is False


class TestCameraRestart:
    """Tests for scans and teardown while the camera is being re-acquired."""

    @pytest.fixture
    def driver(self, settings) -> QRScanDriver:
        return QRScanDriver(settings, decoder=FakeDecoder())

    @pytest.fixture
    def coordinator(self, driver, settings, api_client, session_store, recorder):
        return CheckInCoordinator(
            driver,
            api_client,
            session_store,
            context=ScanContext(schedule_id=7),
            settings=settings,
            on_overlay=recorder.overlay,
            on_toast=recorder.toast,
            retry_sleep=recorder.sleep,
        )

    async def test_scan_during_restart_keeps_camera_stopped(
        self, coordinator, driver, booking_api
    ):
        """Test a check-in that starts mid-restart keeps scanning off until it ends."""
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        source = FakeFrameSource(reopen_delay=0.2)
        await coordinator.start(source)

        await coordinator.on_decode_payload("QR1")
        await wait_for(lambda: source.opening)

        booking_api.gate = asyncio.Event()
        second = asyncio.create_task(coordinator.on_decode_payload("QR2"))
        await wait_for(lambda: len(booking_api.calls(CHECKIN)) == 2)

        assert driver.state != ScannerState.SCANNING
        assert not source.is_open

        booking_api.gate.set()
        result = await second
        await coordinator.wait_idle()

        assert result.success is True
        assert driver.state == ScannerState.SCANNING
        assert source.is_open
        await coordinator.teardown()

    async def test_teardown_during_restart_releases_camera(self, coordinator, driver, booking_api):
        booking_api.add("POST", CHECKIN, 200, SUCCESS_BODY)
        source = FakeFrameSource(reopen_delay=0.2)
        await coordinator.start(source)

        await coordinator.on_decode_payload("QR1")
        await wait_for(lambda: source.opening)
        await coordinator.teardown()

        assert not source.is_open
        assert driver.state == ScannerState.UNINITIALIZED
