"""Persistent per-session CSV time series and summary file."""

from __future__ import annotations

import csv
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import IO, Mapping

from sensorscope_telemetry.metrics import metric_leaves
from sensorscope_telemetry.models import Snapshot, StatSummary

from .config import config_root


_log = logging.getLogger("sensorscope.session_log")

SUMMARY_HEADER = ("metric", "min", "max", "avg", "current")


def session_dir(directory: str | Path | None = None) -> Path:
    path = Path(directory).expanduser() if directory else config_root() / "sessions"
    path.mkdir(parents=True, exist_ok=True)
    return path


def new_session_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def _fmt(value: float | None) -> str:
    return "" if value is None else f"{value:.2f}"


class SessionLogger:
    """Appends one CSV row per snapshot.

    The column set is fixed by the first snapshot: keys that appear later are not
    logged and keys that go missing are written blank. The summary file is
    rewritten in full every ``summary_every_s`` seconds of session time and on close.
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        session_id: str | None = None,
        summary_every_s: float = 300.0,
    ) -> None:
        self.directory = session_dir(directory)
        self.session_id = session_id or new_session_id()
        self.summary_every_s = summary_every_s
        self.path = self.directory / f"sensorscope-{self.session_id}.csv"
        self.summary_path = self.directory / f"summary-{self.session_id}.csv"

        self._file: IO[str] | None = None
        self._writer = None
        self._header: list[str] | None = None
        self._started_at: float | None = None
        self._last_summary_at: float | None = None
        self._last_stats: Mapping[str, StatSummary] = {}
        self._closed = False
        self.rows_written = 0

    @property
    def header(self) -> list[str] | None:
        return list(self._header) if self._header is not None else None

    def _open(self, keys: list[str]) -> None:
        self._header = keys
        self._file = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._file)
        self._writer.writerow(["timestamp", "runtime_ms", *keys])
        _log.info(
            "session log opened at %s with %d metrics",
            self.path,
            len(keys),
            extra={"event": "session_log_opened"},
        )

    def log(self, snapshot: Snapshot) -> None:
        if self._closed:
            return
        leaves = metric_leaves(snapshot)
        if self._header is None:
            self._started_at = snapshot.monotonic
            self._last_summary_at = snapshot.monotonic
            self._open(list(leaves))

        runtime_ms = int(round((snapshot.monotonic - (self._started_at or 0.0)) * 1000))
        row = [snapshot.timestamp.isoformat(), str(runtime_ms)]
        row.extend(_fmt(leaves.get(key)) for key in self._header or ())
        self._writer.writerow(row)
        self._file.flush()
        self.rows_written += 1

        self._last_stats = snapshot.stats
        if snapshot.monotonic - (self._last_summary_at or 0.0) >= self.summary_every_s:
            self.write_summary(snapshot.stats)
            self._last_summary_at = snapshot.monotonic

    def write_summary(self, stats: Mapping[str, StatSummary] | None = None) -> Path:
        stats = self._last_stats if stats is None else stats
        tmp = self.summary_path.with_suffix(".csv.tmp")
        with tmp.open("w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(SUMMARY_HEADER)
            for key, summary in stats.items():
                writer.writerow([key, _fmt(summary.min), _fmt(summary.max), _fmt(summary.avg), _fmt(summary.current)])
        os.replace(tmp, self.summary_path)
        return self.summary_path

    def close(self, stats: Mapping[str, StatSummary] | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._header is not None or stats:
                self.write_summary(stats)
        finally:
            if self._file is not None:
                self._file.close()
                self._file = None
        _log.info(
            "session log closed rows=%d",
            self.rows_written,
            extra={"event": "session_log_closed"},
        )
