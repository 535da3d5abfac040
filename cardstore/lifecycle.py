"""
Process shutdown hooks that flush the database before the process exits.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cardstore.db import Store

logger = logging.getLogger(__name__)


class ShutdownHooks:
    """
    Flush on SIGINT/SIGTERM and close at interpreter exit.

    The previously installed handlers are kept and called after the flush, so
    a server that owns signal handling (uvicorn) still sees the signal.
    Without a previous handler the default behaviour is reproduced:
    SIGINT raises ``KeyboardInterrupt`` and SIGTERM raises ``SystemExit``.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, store: "Store"):
        self.store = store
        self.previous: dict[int, Any] = {}
        self.installed = False

    def install(self) -> "ShutdownHooks":
        if self.installed:
            return self
        atexit.register(self.at_exit)
        if threading.current_thread() is threading.main_thread():
            for signum in self.SIGNALS:
                self.previous[signum] = signal.getsignal(signum)
                signal.signal(signum, self.handle)
        else:
            logger.info("Not on the main thread; skipping signal handlers")
        self.installed = True
        return self

    def uninstall(self) -> None:
        if not self.installed:
            return
        atexit.unregister(self.at_exit)
        if threading.current_thread() is threading.main_thread():
            for signum, handler in self.previous.items():
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self.previous.clear()
        self.installed = False

    def flush(self) -> bool:
        if self.store.closed:
            return False
        return self.store.save_now()

    def at_exit(self) -> None:
        if not self.store.closed:
            self.store.close()

    def handle(self, signum: int, frame: Any) -> None:
        logger.info("%s received; saving database", signal.Signals(signum).name)
        self.flush()
        previous = self.previous.get(signum)
        if callable(previous):
            previous(signum, frame)
            return
        if previous == signal.SIG_IGN:
            return
        if signum == signal.SIGINT:
            raise KeyboardInterrupt
        raise SystemExit(128 + signum)
