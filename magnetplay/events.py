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

"""Engine-to-session messages, and the ordered channel that carries them."""

from __future__ import annotations

import collections
import collections.abc
import contextlib
import dataclasses
import threading
from typing import Deque
from typing import Optional
from typing import Sequence
from typing import Union

from magnetplay import types


@dataclasses.dataclass(frozen=True)
class MetadataReady:

    files: Sequence[types.FileRef]
    num_pieces: int
    piece_length: int


@dataclasses.dataclass(frozen=True)
class PieceVerified:

    index: int


@dataclasses.dataclass(frozen=True)
class Idle:
    """The engine has nothing left to fetch for the current selection."""


@dataclasses.dataclass(frozen=True)
class EngineError:

    exception: Exception


Event = Union[MetadataReady, PieceVerified, Idle, EngineError]


class Channel(collections.abc.Iterator, contextlib.AbstractContextManager):
    """A FIFO of engine events for exactly one session.

    The engine feeds events from whatever thread it likes; the session
    iterates them in order on its own thread. Closing the channel drops any
    undelivered events and ends iteration.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.RLock())
        self._deque: Deque[Event] = collections.deque()
        self._exception: Optional[BaseException] = None

    def __next__(self) -> Event:
        with self._condition:
            while True:
                if self._exception:
                    raise self._exception
                if self._deque:
                    return self._deque.popleft()
                self._condition.wait()

    def feed(self, *events: Event) -> bool:
        if not events:
            return False
        with self._condition:
            if self._exception:
                return False
            self._deque.extend(events)
            self._condition.notify_all()
            return True

    def close(self, exception: BaseException = None) -> None:
        with self._condition:
            if self._exception:
                return
            if exception is None:
                exception = StopIteration()
            self._exception = exception
            self._deque.clear()
            self._condition.notify_all()

    def is_closed(self) -> bool:
        with self._condition:
            return self._exception is not None

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
