# src/calcorrect/__main__.py
# =============================================================================
# calcorrect — CLI Entrypoint (python -m calcorrect …)
# -----------------------------------------------------------------------------
# Delegates to the Typer app defined in calcorrect.cli.
# • Clean exit codes for batch schedulers
# • Rich tracebacks only on interactive terminals
# • Quiet SIGPIPE when piping output to head and friends
# =============================================================================
from __future__ import annotations

import os
import sys
from typing import Callable


def _enable_rich_tracebacks() -> None:
    if sys.stderr.isatty():
        from rich.traceback import install as _rich_install

        _rich_install(show_locals=False, suppress=["typer", "click"])


def _set_sigpipe_quiet() -> None:
    # Avoid BrokenPipeErrors when piping to head -n1, etc.
    if os.name != "nt":
        import signal

        signal.signal(signal.SIGPIPE, signal.SIG_DFL)


def _invoke(fn: Callable[[], object]) -> int:
    """Call the Typer app and normalize exit codes."""
    try:
        fn()
        return 0
    except SystemExit as se:
        code = se.code
        if code is None:
            return 0
        return code if isinstance(code, int) else 1
    except KeyboardInterrupt:
        sys.stderr.write("interrupted: keyboard interrupt\n")
        return 130  # standard SIGINT exit


def main() -> None:
    """Module entrypoint for `python -m calcorrect`."""
    _enable_rich_tracebacks()
    _set_sigpipe_quiet()
    from calcorrect import cli

    raise SystemExit(_invoke(cli.main))


if __name__ == "__main__":
    main()
