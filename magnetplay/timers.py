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

"""Cancellable delayed calls.

A callback receives the Handle it was scheduled under, so its owner can
check that the handle is still the one it stored before acting. cancel() is
best-effort: a callback that already started running is not interrupted.
"""

from __future__ import annotations

import abc
import logging
import threading
from typing import Any
from typing import Callable
from typing import Optional

_LOG = logging.getLogger(__name__)

Callback = Callable[["Handle"], Any]


class Handle:
    def __init__(self, *, name: str = "") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._cancelled = False

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name!r}>"


class Scheduler(abc.ABC):
    @abc.abstractmethod
    def call_later(
        self, delay: float, callback: Callback, *, name: str = ""
    ) -> Handle:
        raise NotImplementedError


def _run_callback(handle: Handle, callback: Callback) -> None:
    if handle.cancelled():
        return
    try:
        callback(handle)
    except Exception:
        _LOG.exception("running timer %r", handle)


class _ThreadingHandle(Handle):
    def __init__(self, *, name: str = "") -> None:
        super().__init__(name=name)
        self.timer: Optional[threading.Timer] = None

    def cancel(self) -> None:
        super().cancel()
        if self.timer is not None:
            self.timer.cancel()


class ThreadingScheduler(Scheduler):
    """Runs each callback on its own threading.Timer thread."""

    def call_later(
        self, delay: float, callback: Callback, *, name: str = ""
    ) -> Handle:
        handle = _ThreadingHandle(name=name)
        timer = threading.Timer(
            max(delay, 0), _run_callback, args=(handle, callback)
        )
        timer.name = f"timer-{name}" if name else timer.name
        timer.daemon = True
        handle.timer = timer
        timer.start()
        return handle
