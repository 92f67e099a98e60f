"""Colored, multiplexed log output for child processes."""

from __future__ import annotations

import threading
from typing import TextIO

MAX_LINE_BUFFER = 1024 * 1024
"""Bytes buffered per writer before an incomplete line is forced out."""

RESET = "\033[0m"
DIM = "\033[2m"

ANSI_COLORS = (
    "\033[36m",  # cyan
    "\033[33m",  # yellow
    "\033[35m",  # magenta
    "\033[32m",  # green
    "\033[34m",  # blue
    "\033[31m",  # red
    "\033[96m",  # bright cyan
    "\033[93m",  # bright yellow
    "\033[95m",  # bright magenta
    "\033[92m",  # bright green
)


def _flush(stream: TextIO) -> None:
    flush = getattr(stream, "flush", None)
    if flush is not None:
        flush()


class Mux:
    """Writes process output to one stream, each line prefixed by name."""

    def __init__(self, out: TextIO, pad_width: int, debug: bool) -> None:
        self.out = out
        self.pad_width = pad_width
        self.debug = debug
        self._lock = threading.Lock()
        self._color_idx = 0

    def prefix_writer(self, name: str, log_file: TextIO | None) -> PrefixWriter:
        """Return a writer that prefixes each line with ``name`` in a color.

        If ``log_file`` is given, a plain copy of each line goes there too.
        """
        with self._lock:
            color = ANSI_COLORS[self._color_idx % len(ANSI_COLORS)]
            self._color_idx += 1
        padded = name.ljust(self.pad_width)
        return PrefixWriter(
            self,
            prefix=f"{color}{padded}{RESET} | ",
            plain_prefix=f"{padded} | ",
            log_file=log_file,
        )

    def system_log(self, message: str) -> None:
        """Write a dimmed system message; only when debug is enabled."""
        if not self.debug:
            return
        prefix = f"{DIM}{'system'.ljust(self.pad_width)}{RESET} | {DIM}"
        with self._lock:
            for line in message.rstrip("\n").split("\n"):
                self.out.write(f"{prefix}{line}{RESET}\n")
            _flush(self.out)


class PrefixWriter:
    """Line-buffering writer attached to a Mux."""

    def __init__(
        self,
        mux: Mux,
        prefix: str,
        plain_prefix: str,
        log_file: TextIO | None = None,
    ) -> None:
        self._mux = mux
        self._prefix = prefix
        self._plain_prefix = plain_prefix
        self._log_file = log_file
        self._pending = b""

    def _emit(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace")
        self._mux.out.write(f"{self._prefix}{text}\n")
        if self._log_file is not None:
            self._log_file.write(f"{self._plain_prefix}{text}\n")

    def _sync(self) -> None:
        _flush(self._mux.out)
        if self._log_file is not None:
            _flush(self._log_file)

    def write(self, data: bytes | str) -> int:
        """Buffer ``data`` and emit every complete line; return its length."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._mux._lock:
            self._pending += data
            *lines, self._pending = self._pending.split(b"\n")
            for line in lines:
                self._emit(line)
            if len(self._pending) > MAX_LINE_BUFFER:
                self._emit(self._pending)
                self._pending = b""
            self._sync()
        return len(data)

    def flush(self) -> None:
        """Emit any remaining incomplete final line."""
        with self._mux._lock:
            if self._pending:
                self._emit(self._pending)
                self._pending = b""
            self._sync()