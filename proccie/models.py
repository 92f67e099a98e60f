"""Process definitions, dependency ordering and filtering."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

DEFAULT_READINESS_TIMEOUT = 30.0
"""Seconds to wait for a readiness command to succeed."""

DEFAULT_READINESS_INTERVAL = 1.0
"""Seconds between readiness check attempts."""


class ConfigError(Exception):
    """Raised when a configuration is invalid or cannot be applied."""


class ExitCodes(tuple):
    """Exit codes that are considered expected for a process.

    An empty set means no exit is expected: any exit triggers shutdown.
    """

    def allows(self, code: int) -> bool:
        """Return True if ``code`` is one of the expected exit codes."""
        return code in self


@dataclass
class Readiness:
    """A readiness check; durations are in seconds, zero meaning unset."""

    command: str = ""
    interval: float = 0.0
    timeout: float = 0.0

    def has_readiness(self) -> bool:
        """Return True if a readiness command is configured."""
        return self.command != ""

    def interval_or_default(self) -> float:
        """Return the configured interval, or the default if unset."""
        return self.interval if self.interval > 0 else DEFAULT_READINESS_INTERVAL

    def timeout_or_default(self) -> float:
        """Return the configured timeout, or the default if unset."""
        return self.timeout if self.timeout > 0 else DEFAULT_READINESS_TIMEOUT


@dataclass
class Process:
    """A single process entry from the configuration file."""

    command: str = ""
    exit_codes: ExitCodes = field(default_factory=ExitCodes)
    readiness: Readiness = field(default_factory=Readiness)
    depends_on: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    log_file: str = ""
    env_file: str = ""
    max_retries: int = 0
    computed_env: dict[str, str] = field(default_factory=dict)


@dataclass
class Config:
    """The mapping of process name to process definition."""

    processes: dict[str, Process] = field(default_factory=dict)

    def filter(
        self,
        only: Iterable[str] | None,
        except_: Iterable[str] | None,
    ) -> None:
        """Keep only the named processes (with dependencies) or drop some.

        Specifying both lists, or naming an undefined process, raises
        ConfigError.
        """
        only = list(only or ())
        except_ = list(except_ or ())

        if only and except_:
            raise ConfigError("cannot specify both -only and -except")

        for name in only:
            if name not in self.processes:
                raise ConfigError(f'-only: unknown process "{name}"')
        for name in except_:
            if name not in self.processes:
                raise ConfigError(f'-except: unknown process "{name}"')

        if only:
            keep: set[str] = set()

            def collect(name: str) -> None:
                if name in keep:
                    return
                keep.add(name)
                proc = self.processes.get(name)
                for dep in proc.depends_on if proc else ():
                    collect(dep)

            for name in only:
                collect(name)

            self.processes = {
                name: proc for name, proc in self.processes.items() if name in keep
            }

        if except_:
            for name in except_:
                self.processes.pop(name, None)
            self._prune_dangling_deps()

    def _prune_dangling_deps(self) -> None:
        for proc in self.processes.values():
            kept = [dep for dep in proc.depends_on if dep in self.processes]
            if len(kept) != len(proc.depends_on):
                proc.depends_on = kept

    def start_order(self) -> list[str]:
        """Return names in topological order, dependencies first.

        Ties are broken alphabetically so the order is deterministic.
        """
        visited: set[str] = set()
        order: list[str] = []

        def visit(name: str) -> None:
            if name in visited:
                return
            visited.add(name)
            proc = self.processes.get(name)
            for dep in sorted(proc.depends_on if proc else ()):
                visit(dep)
            order.append(name)

        for name in self.names():
            visit(name)
        return order

    def names(self) -> list[str]:
        """Return all process names in sorted order."""
        return sorted(self.processes)