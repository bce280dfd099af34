"""Thin read primitives over the sysfs/procfs sensor namespace and external tools.

Every read is cheap and idempotent. A source that does not exist is an expected
condition and yields ``None`` (or an empty list) without logging; nothing here retries.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import Iterator, Sequence


_log = logging.getLogger("sensorscope.telemetry.sensors")

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_MAX_BYTES = 1024 * 1024


def parse_int(raw: str | None, *, source: str = "") -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        _log.debug("unparseable integer %r from %s", raw, source or "sensor")
        return None


def parse_float(raw: str | None, *, source: str = "") -> float | None:
    if raw is None:
        return None
    try:
        return float(raw.strip())
    except ValueError:
        _log.debug("unparseable number %r from %s", raw, source or "sensor")
        return None


class SensorReader:
    """Reads named values below configurable sysfs and procfs roots."""

    def __init__(
        self,
        sys_root: Path | str = "/sys",
        proc_root: Path | str = "/proc",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.sys_root = Path(sys_root)
        self.proc_root = Path(proc_root)
        self.timeout_ms = timeout_ms
        self.max_bytes = max_bytes

    def sys(self, *parts: str) -> Path:
        return self.sys_root.joinpath(*parts)

    def proc(self, *parts: str) -> Path:
        return self.proc_root.joinpath(*parts)

    def read_scalar(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8", errors="replace").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            # EACCES, EIO and friends: transient, omit the field this cycle.
            _log.debug("read failed for %s: %s", path, exc)
            return None

    def read_int(self, path: Path) -> int | None:
        return parse_int(self.read_scalar(path), source=str(path))

    def read_float(self, path: Path) -> float | None:
        return parse_float(self.read_scalar(path), source=str(path))

    def read_directory(self, path: Path) -> list[str]:
        try:
            return sorted(entry.name for entry in path.iterdir() if not entry.name.startswith("."))
        except OSError:
            return []

    def resolve(self, path: Path) -> Path | None:
        try:
            return path.resolve(strict=True)
        except OSError:
            return None

    def exists(self, path: Path) -> bool:
        return path.exists()

    def scan_indexed(
        self,
        base: Path,
        prefix: str,
        suffix: str,
        max_index: int = 30,
        max_misses: int = 5,
    ) -> Iterator[tuple[int, str]]:
        """Yield ``(index, raw)`` for ``base/{prefix}{i}{suffix}`` starting at 1.

        Index numbering may have gaps; the scan ends after ``max_misses``
        consecutive absent entries or at ``max_index``.
        """
        misses = 0
        for index in range(1, max_index + 1):
            raw = self.read_scalar(base / f"{prefix}{index}{suffix}")
            if raw is None:
                misses += 1
                if misses >= max_misses:
                    return
                continue
            misses = 0
            yield index, raw

    def exec_capture(
        self,
        argv: Sequence[str],
        timeout_ms: int | None = None,
        max_bytes: int | None = None,
    ) -> str | None:
        timeout_s = (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000
        limit = max_bytes if max_bytes is not None else self.max_bytes
        try:
            proc = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            _log.debug("command failed to start: %s (%s)", argv[0], exc)
            return None

        # Never buffer more than one byte past the cap, however much the tool writes.
        chunks: list[bytes] = []
        reader = threading.Thread(
            target=lambda: chunks.append(proc.stdout.read(limit + 1)),
            name="sensorscope-exec-reader",
            daemon=True,
        )
        deadline = time.monotonic() + timeout_s
        reader.start()
        try:
            reader.join(timeout_s)
            if reader.is_alive():
                _log.debug("command timed out after %.1fs: %s", timeout_s, argv[0])
                return None
            output = chunks[0] if chunks else b""
            if len(output) > limit:
                _log.debug("command output exceeded %s bytes: %s", limit, argv[0])
                return None
            try:
                returncode = proc.wait(max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired:
                _log.debug("command timed out after %.1fs: %s", timeout_s, argv[0])
                return None
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            reader.join(0.5)
            if not reader.is_alive():
                proc.stdout.close()

        if returncode != 0:
            _log.debug("command exited %s: %s", returncode, argv[0])
            return None
        return output.decode("utf-8", errors="replace").strip()
