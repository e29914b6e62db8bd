"""
Worker Loop
===========

Base class for the long-lived, single-threaded loops (train detection,
lever dispatch, button dispatch). Each worker owns a thread and an
inbox; other components talk to it only by posting messages.

Timers are kept in a heap inside the loop instead of separate timer
threads, so a timer can never fire concurrently with a message handler.
Tests drive a worker without starting its thread by calling run_once()
or process_pending() with an injected clock.
"""

import heapq
import itertools
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class _Stop:
    """Sentinel posted by stop() to wake the loop."""


class Worker(ABC):
    """Thread + inbox + in-loop timers."""

    # Upper bound on how long the loop blocks before re-checking _running
    IDLE_WAIT_S = 0.5

    def __init__(self, name: str, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._clock = clock
        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self._timers: List[Tuple[float, int, Any]] = []
        self._cancelled_timers = set()
        self._timer_ids = itertools.count()
        self._running = False
        self._thread: Optional[threading.Thread] = None

        # Statistics
        self._messages_handled = 0
        self._handler_errors = 0

    def start(self) -> bool:
        """Start the worker thread."""
        if self._running:
            return True

        self._running = True
        self.on_start()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"{self.name} started")
        return True

    def stop(self):
        """Stop the worker thread and run shutdown hooks."""
        if not self._running:
            return

        self._running = False
        self._inbox.put(_Stop())
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        self.on_stop()
        logger.info(f"{self.name} stopped")

    @property
    def running(self) -> bool:
        return self._running

    def post(self, message: Any):
        """Queue a message for the loop. Safe from any thread."""
        self._inbox.put(message)

    def send_after(self, delay_s: float, message: Any) -> int:
        """
        Deliver message to this worker after delay_s seconds.

        Must be called from the worker's own loop (or a test driving it).

        Returns:
            Timer handle for cancel_timer()
        """
        timer_id = next(self._timer_ids)
        heapq.heappush(self._timers, (self._clock() + max(0.0, delay_s), timer_id, message))
        return timer_id

    def cancel_timer(self, timer_id: Optional[int]):
        """Cancel a pending timer. Unknown or fired handles are ignored."""
        if timer_id is None:
            return
        if any(t[1] == timer_id for t in self._timers):
            self._cancelled_timers.add(timer_id)

    def run_once(self, timeout: Optional[float] = 0.0) -> bool:
        """
        Fire due timers, then handle at most one inbox message.

        Args:
            timeout: Max seconds to wait for a message (None blocks
                until the next timer is due or a message arrives)

        Returns:
            True if anything was handled
        """
        handled = self._fire_due_timers()

        wait = timeout
        next_due = self._next_timer_due()
        if next_due is not None:
            until_due = max(0.0, next_due - self._clock())
            wait = until_due if wait is None else min(wait, until_due)

        try:
            if wait is not None and wait <= 0:
                message = self._inbox.get_nowait()
            else:
                message = self._inbox.get(timeout=wait)
        except queue.Empty:
            return self._fire_due_timers() or handled

        if isinstance(message, _Stop):
            return handled

        self._dispatch(message)
        return True

    def process_pending(self, max_messages: int = 1000) -> int:
        """Handle every queued message and due timer without blocking."""
        count = 0
        while count < max_messages and self.run_once(timeout=0.0):
            count += 1
        return count

    def on_start(self):
        """Hook run on the caller's thread before the loop starts."""

    def on_stop(self):
        """Hook run after the loop has exited."""

    @abstractmethod
    def handle_message(self, message: Any):
        """Handle one inbox or timer message."""

    @property
    def stats(self) -> dict:
        return {
            "messages_handled": self._messages_handled,
            "handler_errors": self._handler_errors,
            "pending_timers": len(self._timers) - len(self._cancelled_timers),
        }

    def _loop(self):
        while self._running:
            self.run_once(timeout=self.IDLE_WAIT_S)

    def _next_timer_due(self) -> Optional[float]:
        while self._timers and self._timers[0][1] in self._cancelled_timers:
            _, timer_id, _ = heapq.heappop(self._timers)
            self._cancelled_timers.discard(timer_id)
        return self._timers[0][0] if self._timers else None

    def _fire_due_timers(self) -> bool:
        # Timers scheduled by these handlers wait for the next pass
        now = self._clock()
        due = []
        while True:
            next_due = self._next_timer_due()
            if next_due is None or next_due > now:
                break
            due.append(heapq.heappop(self._timers)[2])

        for message in due:
            self._dispatch(message)
        return bool(due)

    def _dispatch(self, message: Any):
        try:
            self.handle_message(message)
            self._messages_handled += 1
        except Exception as e:
            self._handler_errors += 1
            logger.error(f"{self.name} failed handling {type(message).__name__}: {e}", exc_info=True)
