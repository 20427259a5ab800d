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

"""Datatype classes shared between the engine and the session core."""

import dataclasses
from typing import NewType

InfoHash = NewType("InfoHash", str)


@dataclasses.dataclass(frozen=True)
class FileRef:
    """One file within a torrent.

    Attributes:
        index: The file's index in the torrent's file list.
        path: The file's path, relative to the save path.
        offset: The byte offset of the file within the torrent's data.
        length: The length of the file in bytes.
    """

    index: int
    path: str
    offset: int
    length: int

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f"offset: {self.offset} < 0")
        if self.length < 0:
            raise ValueError(f"length: {self.length} < 0")

    @property
    def stop(self) -> int:
        return self.offset + self.length


@dataclasses.dataclass(frozen=True)
class Stats:
    """Live swarm statistics. Rates are bytes per second."""

    downloaded: int = 0
    uploaded: int = 0
    download_rate: int = 0
    upload_rate: int = 0
    peers: int = 0
