"""
==============================================================================
Session Logger Module
==============================================================================

Summary log file written when a kiosk session ends.

File Format:
-----------
checkin_{context}_{YYYY-MM-DD}_{HH-MM-SS}.log

Contents:
---------
- Session context (schedule / booking)
- Start, end and duration
- Scan counters: accepted, successful, rejected, failed, dropped

==============================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from checkin_kiosk.config import get_settings
from checkin_kiosk.schemas.checkin import CheckInStats, ScanContext


# Module logger
logger = logging.getLogger(__name__)


class CheckInSessionLogger:
    """
    Generator for kiosk session summary files.

    Example:
        >>> session_logger = CheckInSessionLogger()
        >>> session_logger.generate_log(context, stats, started_at)
        'storage/logs/checkin_schedule-7_2025-01-15_10-30-45.log'
    """

    def __init__(self, log_dir: Optional[Path] = None) -> None:
        """
        Args:
            log_dir: Custom log directory (uses settings if None)
        """
        self._log_dir = log_dir or get_settings().log_path
        self._log_dir.mkdir(parents=True, exist_ok=True)

    def generate_log(
        self,
        context: ScanContext,
        stats: CheckInStats,
        started_at: datetime,
        ended_at: Optional[datetime] = None
    ) -> str:
        """
        Write the summary for one session.

        Returns:
            Path to the generated log file
        """
        ended_at = ended_at or datetime.now(timezone.utc)
        timestamp = ended_at.strftime("%Y-%m-%d_%H-%M-%S")
        filepath = self._log_dir / f"checkin_{context.label()}_{timestamp}.log"

        filepath.write_text(
            self._format_log(context, stats, started_at, ended_at),
            encoding="utf-8"
        )

        logger.info(f"✅ Generated session log: {filepath}")
        return str(filepath)

    def _format_log(
        self,
        context: ScanContext,
        stats: CheckInStats,
        started_at: datetime,
        ended_at: datetime
    ) -> str:
        separator = "=" * 80

        lines = [
            separator,
            "CHECK-IN SESSION LOG",
            separator,
            "",
            f"Schedule:        {context.schedule_id or 'N/A'}",
            f"Booking:         {context.booking_id or 'N/A'}",
            "",
            f"Started At:      {self._format_datetime(started_at)}",
            f"Ended At:        {self._format_datetime(ended_at)}",
            f"Duration:        {self._format_duration((ended_at - started_at).total_seconds())}",
            "",
            separator,
            "SUMMARY",
            separator,
            "",
            f"Scans Accepted:  {stats.scans}",
            f"Checked In:      {stats.succeeded}",
            f"Rejected:        {stats.rejected}",
            f"Failed:          {stats.failed}",
            f"Dropped:         {stats.dropped}",
            f"Success Rate:    {self._rate(stats):.1f}%",
            "",
            separator,
        ]

        return "\n".join(lines)

    @staticmethod
    def _rate(stats: CheckInStats) -> float:
        if stats.scans == 0:
            return 0.0
        return stats.succeeded / stats.scans * 100

    @staticmethod
    def _format_datetime(dt: datetime) -> str:
        return dt.strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _format_duration(seconds: float) -> str:
        """Format duration in human-readable form."""
        if seconds < 0:
            return "N/A"

        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        parts = []
        if hours > 0:
            parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
        if minutes > 0:
            parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
        if secs > 0 or not parts:
            parts.append(f"{secs} second{'s' if secs != 1 else ''}")

        return " ".join(parts)
