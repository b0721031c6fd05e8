"""
Keyboard handling for AMI Migrate CLI.

An ESC key press during a long-running operation sets the operation's
cancel event, which aborts the current wait.
"""

import atexit
import select
import sys
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from rich.console import Console

# ESC key code
ESC_KEY = '\x1b'

POLL_SECONDS = 0.2


class _Terminal:
    """Puts stdin into cbreak mode and restores it afterwards."""

    def __init__(self):
        self._saved = None

    def setup(self) -> bool:
        if not sys.stdin.isatty():
            return False
        try:
            import termios
            import tty

            fd = sys.stdin.fileno()
            self._saved = termios.tcgetattr(fd)
            # cbreak keeps Ctrl+C working
            tty.setcbreak(fd)
            return True
        except (ImportError, OSError):
            return False

    def restore(self) -> None:
        if self._saved is None:
            return
        try:
            import termios
            termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, self._saved)
        except (ImportError, OSError):
            pass
        self._saved = None


def check_for_escape(timeout: float = 0.0) -> bool:
    """Check if ESC was pressed, waiting at most ``timeout`` seconds."""
    try:
        if select.select([sys.stdin], [], [], timeout)[0]:
            return sys.stdin.read(1) == ESC_KEY
    except (OSError, ValueError):
        pass
    return False


@contextmanager
def escape_listener(
    cancel_event: threading.Event,
    console: Optional[Console] = None,
) -> Generator[threading.Event, None, None]:
    """Set ``cancel_event`` when ESC is pressed while the block runs.

    Does nothing when stdin is not a terminal.

    Yields:
        The cancel event
    """
    terminal = _Terminal()
    if not terminal.setup():
        yield cancel_event
        return

    stopped = threading.Event()

    def listen() -> None:
        while not stopped.is_set() and not cancel_event.is_set():
            if check_for_escape(POLL_SECONDS):
                if console is not None:
                    console.print("[yellow]ESC pressed - cancelling...[/yellow]")
                cancel_event.set()

    thread = threading.Thread(target=listen, name="escape-listener", daemon=True)
    atexit.register(terminal.restore)
    thread.start()

    try:
        yield cancel_event
    finally:
        stopped.set()
        thread.join(timeout=POLL_SECONDS * 2)
        terminal.restore()
        atexit.unregister(terminal.restore)


def show_escape_hint(console: Console) -> None:
    """Display a hint about ESC key to cancel."""
    console.print("[dim](Press ESC to cancel a wait in progress)[/dim]")
