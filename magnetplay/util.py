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

"""Utility functions for magnetplay."""

import threading
from typing import Any
from typing import Callable
from typing import Iterator
from typing import Tuple


def range_to_pieces(
    piece_length: int, start: int, stop: int
) -> Tuple[int, int]:
    """Converts a range of bytes to a range of pieces.

    Pieces are assumed to be zero-aligned.

    Args:
        piece_length: The length of a piece.
        start: The first byte of the range.
        stop: The last byte of the range, plus one.

    Returns:
        A (start_piece, stop_piece) tuple, where start_piece is the first piece
            overlapping the input range, and stop_piece is the last piece
            overlapping the input range, plus one.
    """
    if stop <= start:
        return (start // piece_length, start // piece_length)
    return (start // piece_length, (stop - 1) // piece_length + 1)


def enum_piecewise_ranges(
    piece_length: int, start: int, stop: int
) -> Iterator[Tuple[int, int, int]]:
    """Splits a byte range into smaller piece-aligned ranges.

    The given byte range (start, stop) is split into smaller sub-ranges, such
    that each sub-range overlaps exactly one piece of piece_length.

    Args:
        piece_length: The length of a piece.
        start: The first byte of the range.
        stop: The last byte of the range, plus one.

    Yields:
        Tuples of (piece, start, stop).
    """
    for piece in range(*range_to_pieces(piece_length, start, stop)):
        r_start = piece * piece_length
        r_stop = (piece + 1) * piece_length
        if r_start < start:
            r_start = start
        if r_stop > stop:
            r_stop = stop
        yield piece, r_start, r_stop


class Once:
    """Wraps a callable so that only the first call has any effect."""

    def __init__(self, func: Callable[[], Any]) -> None:
        self._func = func
        self._lock = threading.Lock()
        self._called = False

    def __call__(self) -> None:
        with self._lock:
            if self._called:
                return
            self._called = True
        self._func()

    @property
    def called(self) -> bool:
        with self._lock:
            return self._called
