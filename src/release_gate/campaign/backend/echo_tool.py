"""Deterministic stand-in for the cargo toolchain used by integration tests.

Behaviour is driven by environment variables so that one command line can
fail, hang, or pass depending on the test:

- ``RELEASE_GATE_ECHO_FAIL_ON``: comma-separated substrings; when one occurs
  in the joined arguments the tool exits 101 (cargo's failure status).
- ``RELEASE_GATE_ECHO_SLEEP_ON``: ``<substring>=<seconds>`` pairs separated by
  commas; the tool sleeps before answering.
- ``RELEASE_GATE_ECHO_TRACE``: optional file that receives one line per call.
"""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

FAILURE_EXIT_STATUS = 101


def main(argv: list[str] | None = None) -> int:
    """Echo the invocation and exit according to the environment."""

    args = list(sys.argv[1:] if argv is None else argv)
    joined = " ".join(args)

    trace_path = os.getenv("RELEASE_GATE_ECHO_TRACE")
    if trace_path:
        with Path(trace_path).open("a", encoding="utf-8") as trace:
            trace.write(joined + "\n")

    for token in _split(os.getenv("RELEASE_GATE_ECHO_SLEEP_ON", "")):
        needle, _, seconds = token.rpartition("=")
        if needle and needle in joined:
            time.sleep(float(seconds))

    print(f"echo: {joined}")
    for needle in _split(os.getenv("RELEASE_GATE_ECHO_FAIL_ON", "")):
        if needle in joined:
            print(f"error: could not compile `crate` ({needle})", file=sys.stderr)
            return FAILURE_EXIT_STATUS
    return 0


def _split(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
