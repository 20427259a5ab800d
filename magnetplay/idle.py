# Copyright (c) 2020 AllSeeingEyeTolledEweSew
#
# Permission to use, copy, modify, and/or distribute this software for any
# purpose with or without fee is hereby granted.
#
# THE SOFTWARE IS PROVIDED "AS IS" AND THE AUTHOR DISCLAIMS ALL WARRANTIES WITH
# REGARD TO THIS SOFTWARE INCLUDING ALL IMPLIED WARRANTIES OF MERCHANTABILITY
# AND FITNESS. IN NO EVENT SHALL THE AUTHOR BE LIABLE FOR ANY SPECIAL, DIRECT,
# INDIRECT, OR CONSEQUENTIAL DAMAGES OR ANY DAMAGES WHATSOEVER RESULTING FROM
# LOSS OF USE, DATA OR PROFITS, WHETHER IN AN ACTION OF CONTRACT, NEGLIGENCE OR
# OTHER TORTIOUS ACTION, ARISING OUT OF OR IN CONNECTION WITH THE USE OR
# PERFORMANCE OF THIS SOFTWARE.

"""Connection reference counting with idle pause and idle removal.

Every HTTP exchange attached to a session holds one connection. When the
count drops to zero, a pause timer starts; when it fires with the count still
at zero, the session is paused and a remove timer starts; when that fires
with the count still at zero, the controller closes itself and expires the
session. A new connection at any point before expiry cancels both timers and
resumes the session.

All state is guarded by the lock passed in by the owner, which is the
owning session's lock. Timer callbacks take the same lock and only act if
their handle is still the current one, so a stale timer can never undo a
newer connection.
"""

import logging
import threading
from typing import Any
from typing import Callable
from typing import Optional

from magnetplay import timers

_LOG = logging.getLogger(__name__)


class IdleController:
    def __init__(
        self,
        *,
        lock: threading.RLock,
        scheduler: timers.Scheduler,
        pause_delay: float,
        remove_delay: float,
        on_pause: Callable[[], Any],
        on_resume: Callable[[], Any],
        on_expire: Callable[[], Any],
        name: str = "",
    ) -> None:
        self._lock = lock
        self._scheduler = scheduler
        self._pause_delay = pause_delay
        self._remove_delay = remove_delay
        self._on_pause = on_pause
        self._on_resume = on_resume
        self._on_expire = on_expire
        self._name = name

        self._connections = 0
        self._paused = False
        self._closed = False
        self._pause_timer: Optional[timers.Handle] = None
        self._remove_timer: Optional[timers.Handle] = None

    @property
    def connections(self) -> int:
        with self._lock:
            return self._connections

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def add_connection(self) -> bool:
        """Attaches one consumer.

        Returns:
            False if the controller is closed, in which case nothing changed.
        """
        with self._lock:
            if self._closed:
                return False
            self._connections += 1
            self._cancel_timers_locked()
            if self._paused:
                self._paused = False
                self._on_resume()
            return True

    def remove_connection(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._connections == 0:
                _LOG.warning("%s: connection count underflow", self._name)
                return
            self._connections -= 1
            if self._connections == 0:
                if self._pause_timer is not None:
                    self._pause_timer.cancel()
                self._pause_timer = self._scheduler.call_later(
                    self._pause_delay, self._fire_pause, name="pause"
                )

    def _cancel_timers_locked(self) -> None:
        if self._pause_timer is not None:
            self._pause_timer.cancel()
            self._pause_timer = None
        if self._remove_timer is not None:
            self._remove_timer.cancel()
            self._remove_timer = None

    def _fire_pause(self, handle: timers.Handle) -> None:
        with self._lock:
            if self._closed or handle is not self._pause_timer:
                return
            self._pause_timer = None
            if self._connections:
                return
            if not self._paused and self._on_pause():
                self._paused = True
            if self._remove_timer is not None:
                self._remove_timer.cancel()
            self._remove_timer = self._scheduler.call_later(
                self._remove_delay, self._fire_remove, name="remove"
            )

    def _fire_remove(self, handle: timers.Handle) -> None:
        with self._lock:
            if self._closed or handle is not self._remove_timer:
                return
            self._remove_timer = None
            if self._connections:
                return
            # Close before releasing the lock, so a connection arriving now
            # is refused instead of attaching to a session being destroyed
            self._closed = True
        self._on_expire()

    def close(self) -> None:
        """Cancels all timers and refuses any further connections."""
        with self._lock:
            self._closed = True
            self._cancel_timers_locked()
