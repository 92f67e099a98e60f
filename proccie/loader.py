"""Loading, parsing and validating process configuration files."""

from __future__ import annotations

import os
import tomllib
from typing import Any

from dotenv import dotenv_values

from proccie.models import Config, ConfigError, ExitCodes, Process, Readiness


def load(path: str | os.PathLike[str]) -> Config:
    """Read, parse and validate a TOML config file.

    Besides process tables the file may hold a top-level ``env_file``
    string and an ``environment`` table; any other top-level scalar is
    rejected. Every problem is reported as a ConfigError.
    """
    path = os.fspath(path)
    try:
        with open(os.path.normpath(path), "rb") as stream:
            data = stream.read()
    except OSError as exc:
        raise ConfigError(f"reading config {path}: {exc}") from exc

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigError(f"parsing config {path}: {exc}") from exc

    global_env_file, global_env, processes = parse_config(text, path)

    try:
        validate(processes)
    except ConfigError as exc:
        raise ConfigError(f"loading {path}: {exc}") from exc

    compute_environments(processes, global_env_file, global_env)
    return Config(processes=processes)


def parse_config(
    text: str, path: str
) -> tuple[str, dict[str, str], dict[str, Process]]:
    """Decode TOML text into (global env_file, global environment, processes)."""
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"parsing config {path}: {exc}") from exc

    global_env_file = ""
    if "env_file" in raw:
        value = raw.pop("env_file")
        if not isinstance(value, str):
            raise ConfigError(
                f"parsing config {path}: top-level env_file must be a string"
            )
        global_env_file = value

    global_env: dict[str, str] = {}
    if "environment" in raw:
        value = raw.pop("environment")
        if not isinstance(value, dict):
            raise ConfigError(
                f"parsing config {path}: top-level environment must be a table"
            )
        if not all(isinstance(v, str) for v in value.values()):
            raise ConfigError(
                f"parsing config {path}: top-level environment: "
                "value must be a string, got non-string"
            )
        global_env = dict(value)

    for name, value in raw.items():
        if not isinstance(value, dict):
            raise ConfigError(
                f'parsing config {path}: unknown top-level key "{name}" '
                "(expected a process table)"
            )

    processes: dict[str, Process] = {}
    for name, table in raw.items():
        try:
            processes[name] = _decode_process(table)
        except ConfigError as exc:
            raise ConfigError(
                f'parsing config {path}: process "{name}": {exc}'
            ) from exc

    return global_env_file, global_env, processes


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _string(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _decode_process(table: dict[str, Any]) -> Process:
    proc = Process()

    if "command" in table:
        proc.command = _string(table["command"], "command")

    if "exit_codes" in table:
        codes = table["exit_codes"]
        if not isinstance(codes, list) or not all(_is_int(c) for c in codes):
            raise ConfigError("exit_codes: expected an array of integers")
        proc.exit_codes = ExitCodes(codes)

    if "readiness" in table:
        proc.readiness = parse_readiness(table["readiness"])

    if "depends_on" in table:
        deps = table["depends_on"]
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise ConfigError("depends_on: expected an array of strings")
        proc.depends_on = list(deps)

    if "environment" in table:
        env = table["environment"]
        if not isinstance(env, dict) or not all(
            isinstance(v, str) for v in env.values()
        ):
            raise ConfigError("environment: expected a table of strings")
        proc.environment = dict(env)

    if "log_file" in table:
        proc.log_file = _string(table["log_file"], "log_file")

    if "env_file" in table:
        proc.env_file = _string(table["env_file"], "env_file")

    if "max_retries" in table:
        retries = table["max_retries"]
        if not _is_int(retries):
            raise ConfigError(
                f"max_retries: expected integer, got {type(retries).__name__}"
            )
        proc.max_retries = retries

    return proc


def parse_readiness(value: Any) -> Readiness:
    """Build a Readiness from a bare command string or a table.

    The table form requires ``command`` and may set ``interval`` and
    ``timeout`` as whole seconds.
    """
    if isinstance(value, str):
        return Readiness(command=value)

    if not isinstance(value, dict):
        raise ConfigError(
            f"readiness: expected string or table, got {type(value).__name__}"
        )

    if "command" not in value:
        raise ConfigError('readiness: table form requires "command" key')
    command = value["command"]
    if not isinstance(command, str):
        raise ConfigError(
            f"readiness.command: expected string, got {type(command).__name__}"
        )

    readiness = Readiness(command=command)
    for key in ("interval", "timeout"):
        if key in value:
            seconds = value[key]
            if not _is_int(seconds):
                raise ConfigError(
                    f"readiness.{key}: expected integer (seconds), "
                    f"got {type(seconds).__name__}"
                )
            setattr(readiness, key, float(seconds))
    return readiness


def validate(processes: dict[str, Process]) -> None:
    """Check every process for correctness, then check for cycles."""
    errors: list[str] = []

    for name, proc in processes.items():
        if proc.command == "":
            errors.append(f'process "{name}": missing required key "command"')

        if proc.exit_codes and proc.readiness.has_readiness():
            errors.append(
                f'process "{name}": "exit_codes" and "readiness" are mutually exclusive'
            )

        seen: set[str] = set()
        for dep in proc.depends_on:
            if dep in seen:
                errors.append(f'process "{name}": duplicate dependency "{dep}"')
                continue
            seen.add(dep)
            if dep == name:
                errors.append(f'process "{name}": cannot depend on itself')
                continue
            if dep not in processes:
                errors.append(
                    f'process "{name}": depends on "{dep}", which is not defined'
                )

        if proc.max_retries < 0:
            errors.append(f'process "{name}": max_retries must be non-negative')

    if errors:
        errors.sort()
        raise ConfigError("config validation failed:\n  " + "\n  ".join(errors))

    check_cycles(processes)


def check_cycles(processes: dict[str, Process]) -> None:
    """Raise ConfigError naming the first dependency cycle found."""
    visiting: set[str] = set()
    visited: set[str] = set()

    def visit(name: str, path: list[str]) -> None:
        if name in visited:
            return
        if name in visiting:
            chain = " -> ".join(path)
            raise ConfigError(f"dependency cycle detected: {chain} -> {name}")
        visiting.add(name)
        proc = processes.get(name)
        for dep in proc.depends_on if proc else ():
            visit(dep, [*path, name])
        visiting.discard(name)
        visited.add(name)

    for name in sorted(processes):
        if name not in visited:
            visit(name, [])


def _read_env_file(path: str) -> dict[str, str]:
    with open(path, encoding="utf-8") as stream:
        values = dotenv_values(stream=stream)
    return {key: value or "" for key, value in values.items()}


def compute_environments(
    processes: dict[str, Process],
    global_env_file: str,
    global_env: dict[str, str],
) -> None:
    """Fill in each process's computed environment.

    Later layers override earlier ones: OS environment, global env_file,
    global environment table, per-process env_file, per-process table.
    """
    global_file_env: dict[str, str] = {}
    if global_env_file:
        try:
            global_file_env = _read_env_file(global_env_file)
        except OSError as exc:
            raise ConfigError(f"config: top-level env_file: {exc}") from exc

    os_env = dict(os.environ)

    for name, proc in processes.items():
        proc_file_env: dict[str, str] = {}
        if proc.env_file:
            try:
                proc_file_env = _read_env_file(proc.env_file)
            except OSError as exc:
                raise ConfigError(f'config: process "{name}" env_file: {exc}') from exc

        proc.computed_env = {
            **os_env,
            **global_file_env,
            **(global_env or {}),
            **proc_file_env,
            **proc.environment,
        }