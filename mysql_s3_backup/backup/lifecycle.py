"""
Run lifetime and teardown.

The coordinator moves a run through RUNNING -> CLEANING -> TERMINATED.
Cleanup is entered either when the workflow falls through (success or
error) or when a termination signal arrives, and runs exactly once.
"""

import signal
import time
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (
    signal.SIGHUP,
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGQUIT,
    signal.SIGUSR1,
)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class RunState(Enum):
    RUNNING = 'running'
    CLEANING = 'cleaning'
    TERMINATED = 'terminated'


class RunTerminated(Exception):
    """Raised in the main thread when a termination signal is delivered."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Script terminated ({signal.Signals(signum).name})")


def format_elapsed(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 3600}h {seconds % 3600 // 60}m {seconds % 60}s"


class CleanupCoordinator:
    """
    Owns process lifetime for a single backup run.

    Cleanup actions are registered in the order they must run. Each action
    is guarded on its own, so a failing step never prevents the next one.
    """

    def __init__(self, signals: Tuple[int, ...] = TERMINATION_SIGNALS, clock: Callable[[], float] = time.monotonic):
        self.signals = signals
        self.clock = clock
        self.state = RunState.RUNNING
        self.received_signal: Optional[int] = None
        self.exit_code: Optional[int] = None
        self.started_at = clock()
        self._actions: List[Tuple[str, Callable[[], None]]] = []
        self._previous_handlers = {}
        self._held = False
        self._saved_mask = None

    @property
    def cancelled(self) -> bool:
        return self.received_signal is not None

    def install(self):
        """Route termination signals into the coordinator."""
        for signum in self.signals:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def uninstall(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def _handle_signal(self, signum, frame):
        name = signal.Signals(signum).name
        if self.state is not RunState.RUNNING or self._held:
            logger.warning(f"Ignoring {name}, cleanup already in progress")
            return

        if self.received_signal is not None:
            logger.warning(f"Ignoring {name}, already terminating")
            return

        self.received_signal = signum
        # Interrupts whatever blocking call the main thread is waiting on
        raise RunTerminated(signum)

    @contextmanager
    def signals_deferred(self):
        """Hold termination signals for the block and deliver them after it."""
        previous = signal.pthread_sigmask(signal.SIG_BLOCK, self.signals)
        try:
            yield
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, previous)

    def hold_signals(self):
        """Block termination signals until finish() enters cleanup."""
        if self._held:
            return
        self._saved_mask = signal.pthread_sigmask(signal.SIG_BLOCK, self.signals)
        self._held = True

    def _release_signals(self):
        if not self._held:
            return
        self._held = False
        signal.pthread_sigmask(signal.SIG_SETMASK, self._saved_mask)
        self._saved_mask = None

    def add_action(self, name: str, action: Callable[[], None]):
        self._actions.append((name, action))

    def finish(self, failed: bool = False) -> int:
        """
        Run the cleanup sequence once and return the process exit code.

        Later calls return the exit code of the first call.
        """
        if self.state is not RunState.RUNNING:
            return self.exit_code if self.exit_code is not None else EXIT_FAILURE

        self.hold_signals()
        self.state = RunState.CLEANING
        # Signals held until now are delivered here and ignored
        self._release_signals()

        logger.info("[Cleanup]")
        for name, action in self._actions:
            try:
                action()
            except Exception as e:
                logger.warning(f"{name} failed: {e}")

        self.exit_code = EXIT_FAILURE if failed or self.cancelled else EXIT_SUCCESS
        logger.info(f"[Finished: {format_elapsed(self.clock() - self.started_at)}]")

        self.uninstall()
        self.state = RunState.TERMINATED
        return self.exit_code
