"""Command-line entry point for the proccie process manager."""

from __future__ import annotations

import argparse
import os
import re
import signal
import sys
import time
from collections.abc import Sequence

from proccie.loader import load
from proccie.models import ConfigError
from proccie.mux import Mux
from proccie.runner import DEFAULT_SHUTDOWN_TIMEOUT, Runner

VERSION = "dev"

DEFAULT_FORCE_SHUTDOWN_DELAY = 0.5
"""Seconds to wait after a forced SIGKILL before hard-exiting."""

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_DESCRIPTION = """\
proccie - process manager

Commands:
  validate    Check that the configuration file is valid"""

_EPILOG = (
    "Send SIGINT/SIGTERM to gracefully stop. "
    "Send a second signal to force kill."
)


def _parse_duration(text: str) -> float:
    """Parse a duration such as ``10s``, ``500ms`` or ``1m30s`` into seconds."""
    value = text.strip()
    sign = 1.0
    if value[:1] in "+-" and value:
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if value == "0":
        return 0.0
    if not value:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
    return sign * total


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proccie",
        usage="proccie [options] [command]",
        description=_DESCRIPTION,
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-f",
        dest="config_path",
        default="Procfile.toml",
        help="path to the TOML config file",
    )
    parser.add_argument(
        "-t",
        dest="timeout",
        type=_parse_duration,
        default=DEFAULT_SHUTDOWN_TIMEOUT,
        help="shutdown timeout before SIGKILL",
    )
    parser.add_argument(
        "-k",
        dest="force_delay",
        type=_parse_duration,
        default=DEFAULT_FORCE_SHUTDOWN_DELAY,
        help="delay after force SIGKILL before hard exit",
    )
    parser.add_argument(
        "-version",
        "--version",
        dest="show_version",
        action="store_true",
        help="print version and exit",
    )
    parser.add_argument(
        "-debug",
        "--debug",
        dest="debug",
        action="store_true",
        help="show system log lines",
    )
    parser.add_argument(
        "-only",
        "--only",
        dest="only",
        default="",
        help="comma-separated list of processes to run (with dependencies)",
    )
    parser.add_argument(
        "-except",
        "--except",
        dest="except_",
        default="",
        help="comma-separated list of processes to exclude",
    )
    parser.add_argument("args", nargs="*", help=argparse.SUPPRESS)
    return parser


def split_flag(value: str) -> list[str]:
    """Split a comma-separated value into trimmed, non-empty names."""
    return [part.strip() for part in value.split(",") if part.strip()]


def run_validate(config_path: str) -> int:
    """Load and validate the config file, printing the result."""
    try:
        config = load(config_path)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    names = ", ".join(config.names())
    print(f"{config_path}: valid ({len(config.processes)} process(es): {names})")
    return 0


def _install_signal_handlers(
    runner: Runner, mux: Mux, force_delay: float
) -> dict[int, object]:
    received = 0

    def handle(signum: int, _frame: object) -> None:
        nonlocal received
        received += 1
        sig_name = signal.Signals(signum).name
        if received == 1:
            mux.system_log(f"received signal: {sig_name}")
            runner.shutdown()
            return
        mux.system_log(f"received second signal: {sig_name}, forcing shutdown")
        runner.force_shutdown()
        time.sleep(force_delay)
        os._exit(1)

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handle)
    return previous


def main(argv: Sequence[str] | None = None) -> int:
    """Run proccie with the given arguments and return its exit code."""
    parser = _build_parser()
    try:
        options = parser.parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0

    if options.show_version:
        print("proccie", VERSION)
        return 0

    if options.args and options.args[0] == "validate":
        return run_validate(options.config_path)

    try:
        config = load(options.config_path)
        config.filter(split_flag(options.only), split_flag(options.except_))
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if not config.processes:
        print(
            f"error: no processes defined in {options.config_path}", file=sys.stderr
        )
        return 1

    pad_width = max(len("system"), *(len(name) for name in config.processes))
    mux = Mux(sys.stdout, pad_width, options.debug)
    runner = Runner(config, mux, shutdown_timeout=options.timeout)

    previous = _install_signal_handlers(runner, mux, options.force_delay)
    try:
        mux.system_log(
            f"proccie {VERSION} starting with {len(config.processes)} process(es)"
        )
        code = runner.run()
        mux.system_log(f"proccie exiting (code {code})")
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return code


if __name__ == "__main__":
    sys.exit(main())