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

"""The swarm engine, as seen by a streaming session.

An Engine downloads one torrent. It reports progress by feeding
magnetplay.events objects into the Channel it was opened with, and accepts
piece selection and read requests from the session.
"""

import abc
from typing import Iterator

from magnetplay import events as events_lib
from magnetplay import magnet as magnet_lib
from magnetplay import types


class Error(Exception):

    pass


class EngineStopped(Error):

    pass


class Engine(abc.ABC):
    @abc.abstractmethod
    def select_range(
        self, start: int, stop: int, *, high_priority: bool = False
    ) -> None:
        """Requests pieces in [start, stop), in order if high_priority."""
        raise NotImplementedError

    @abc.abstractmethod
    def select_file(self, file: types.FileRef) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def deselect_file(self, file: types.FileRef) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def read(
        self, file: types.FileRef, start: int, stop: int
    ) -> Iterator[bytes]:
        """Yields the bytes [start, stop) of file, as pieces arrive.

        Offsets are relative to the start of the file. The iterator blocks
        while the underlying pieces are still missing.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def stop(self) -> None:
        """Stops all swarm activity. Blocks until the engine is quiescent."""
        raise NotImplementedError

    @abc.abstractmethod
    def delete_data(self) -> None:
        """Deletes downloaded data. Only valid after stop()."""
        raise NotImplementedError

    @abc.abstractmethod
    def stats(self) -> types.Stats:
        raise NotImplementedError


class Opener(abc.ABC):
    @abc.abstractmethod
    def open(
        self, magnet: magnet_lib.Magnet, channel: events_lib.Channel
    ) -> Engine:
        raise NotImplementedError
