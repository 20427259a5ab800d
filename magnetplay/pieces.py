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

"""Piece verification state and playback preload selection."""

import math
from typing import List

from magnetplay import engine as engine_lib

BUCKET_SIZE = 100

MISSING = "."
VERIFIED = "*"


class PieceMap:
    """A bitmap of verified pieces, indexed by piece number.

    The map is empty until the torrent's piece count is known.
    """

    def __init__(self, num_pieces: int = 0) -> None:
        if num_pieces < 0:
            raise ValueError(num_pieces)
        self._num_pieces = num_pieces
        self._map = bytearray((num_pieces + 7) >> 3)

    def __len__(self) -> int:
        return self._num_pieces

    def _check(self, index: int) -> None:
        if not isinstance(index, int):
            raise TypeError(index)
        if index < 0 or index >= self._num_pieces:
            raise IndexError(index)

    def __getitem__(self, index: int) -> bool:
        """Returns True if the index'th piece is verified."""
        self._check(index)
        return bool(self._map[index >> 3] & (0x80 >> (index & 7)))

    def set(self, index: int) -> None:
        self._check(index)
        self._map[index >> 3] |= 0x80 >> (index & 7)

    def count(self) -> int:
        return sum(bin(b).count("1") for b in self._map)

    def all_set(self, start: int, stop: int) -> bool:
        return all(self[i] for i in range(start, stop))

    def condense(self, bucket_size: int = BUCKET_SIZE) -> List[str]:
        """Renders the map as strings of "." and "*", one per bucket."""
        chars = "".join(
            VERIFIED if self[i] else MISSING for i in range(len(self))
        )
        return [
            chars[i : i + bucket_size]
            for i in range(0, len(chars), bucket_size)
        ]


def preload_count(num_pieces: int, ratio: float) -> int:
    """Returns how many leading pieces to fetch before playback can start.

    Rounds half up, and never returns less than one piece of a non-empty
    torrent.
    """
    if num_pieces <= 0:
        return 0
    count = int(math.floor(num_pieces * ratio + 0.5))
    return min(max(count, 1), num_pieces)


def video_ready(piece_map: PieceMap, preload: int) -> bool:
    """True when playback can start and seek to the end without stalling.

    That takes the final piece (most containers keep duration and index
    information there) plus the whole preload window.
    """
    if not len(piece_map):
        return False
    if not piece_map[len(piece_map) - 1]:
        return False
    return piece_map.all_set(0, preload)


class PreloadSelector:
    def __init__(self, *, ratio: float) -> None:
        self.ratio = ratio

    def apply(self, engine: engine_lib.Engine, num_pieces: int) -> int:
        """Prioritizes the preload window and the final piece.

        Returns:
            The preload piece count.
        """
        preload = preload_count(num_pieces, self.ratio)
        if not preload:
            return 0
        engine.select_range(0, preload, high_priority=True)
        engine.select_range(num_pieces - 1, num_pieces, high_priority=True)
        return preload
