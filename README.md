# proccie

A small process manager for development. It reads a TOML file that describes
your processes and runs them together. Their output is interleaved on one
console, and each line is prefixed with the process name in its own colour.

Features:

- dependency ordering (`depends_on`)
- readiness checks that must pass before dependents start
- expected exit codes for one-shot tasks such as migrations
- automatic retries (`max_retries`)
- per-process log files and environment variables
- graceful shutdown, escalating from SIGTERM to SIGKILL

Processes are started with `sh -c` in their own process group, so proccie
needs a POSIX system.

## Installation

```
pip install .
```

## Configuration

By default proccie reads `Procfile.toml` in the current directory.

```toml
env_file    = ".env"
environment = { RUST_LOG = "info" }

[db]
command   = "postgres -D data"
readiness = "pg_isready"

[migrate]
command    = "rake db:migrate"
exit_codes = [0]
depends_on = ["db"]

[web]
command     = "npm start"
depends_on  = ["migrate"]
environment = { PORT = "3000" }
log_file    = "tmp/web.log"
max_retries = 3

[web.readiness]
command  = "curl -sf http://localhost:3000/health"
interval = 2
timeout  = 30
```

At the top level, only `env_file` (a string) and `environment` (a table of
strings) are allowed besides the process tables. Any other top-level value is
rejected.

Keys for each process:

| key           | meaning                                                                        |
|---------------|--------------------------------------------------------------------------------|
| `command`     | shell command to run (required)                                                |
| `exit_codes`  | array of exit codes that count as a normal finish                              |
| `readiness`   | a command string, or a table with `command`, `interval` and `timeout` (whole seconds) |
| `depends_on`  | processes that must be ready before this one starts                            |
| `environment` | extra environment variables                                                    |
| `env_file`    | dotenv file loaded for this process                                            |
| `log_file`    | file that receives a plain-text copy of the output, without colour codes       |
| `max_retries` | how many times to restart the process after a failed exit (default 0)          |

The readiness check runs every `interval` seconds (default 1) until it exits
with 0, or until `timeout` seconds have passed (default 30). A single check
is given at most 5 seconds.

`exit_codes` and `readiness` cannot be used on the same process. Validation
also rejects a missing `command`, unknown, duplicate or self dependencies,
a negative `max_retries`, and dependency cycles.

A dependency counts as ready in one of three ways. If it has `exit_codes`, it
is ready once it has exited with an allowed code. If it has `readiness`, it is
ready once its readiness command succeeds. Otherwise it is ready as soon as it
has launched.

A process without `exit_codes` is treated as a long-running service. Any exit
of such a process shuts everything down, even an exit with code 0. This also
happens when a process with `exit_codes` exits with a code that is not listed.
The exit code of proccie is the first non-zero code recorded.

Environment variables are merged in this order, and later sources win: the
inherited environment, the top-level `env_file`, the top-level `environment`,
the process `env_file`, and the process `environment`.

## Usage

```
proccie                      # run everything in Procfile.toml
proccie -f other.toml        # use another config file
proccie -only web,worker     # run only these (plus their dependencies)
proccie -except scheduler    # run everything except these
proccie -t 5s                # wait 5s after SIGTERM before SIGKILL (default 10s)
proccie -k 1s                # delay after a forced SIGKILL before exiting (default 500ms)
proccie -debug               # show system log lines
proccie validate             # check the config file and exit
proccie -version
```

Durations are written as, for example, `500ms`, `5s` or `1m30s`. You cannot
use `-only` and `-except` together. With `-except`, any dependencies on the
excluded processes are dropped.

Press Ctrl-C (or send SIGTERM) once for a graceful shutdown. Send a second
signal to kill all processes immediately.

## Using it from Python

```python
import sys

from proccie.loader import load
from proccie.mux import Mux
from proccie.runner import Runner

config = load("Procfile.toml")
config.filter(["web"], None)          # same as -only web
print(config.start_order())

mux = Mux(sys.stdout, pad_width=10, debug=True)
code = Runner(config, mux, shutdown_timeout=5.0).run()
```

`load` raises `proccie.models.ConfigError` for any problem in the file.
`Runner.shutdown()` stops the processes gracefully, and
`Runner.force_shutdown()` sends SIGKILL straight away.