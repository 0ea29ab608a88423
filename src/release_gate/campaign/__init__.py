"""Release validation campaign: discovery, expansion, execution and reporting.

Why not a Makefile / shell script / nox session?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
A shell script with ``set -e`` stops at the first nonzero exit, which is the
wrong policy for informative checks (docs build, MSRV) and hides every
problem after the first one.  Keeping the campaign in Python makes the
stop/continue policy explicit and testable:

- Targets (examples, feature combinations) are discovered into immutable
  tuples, so expansion and the controller can be exercised with hand-built
  inputs and no filesystem.
- Each task is classified blocking or advisory; the controller state machine
  decides whether a failure aborts the remaining queue.
- Every tool is reached through one narrow ``ProcessRunner`` protocol and can
  be replaced by a fake in tests.
"""
