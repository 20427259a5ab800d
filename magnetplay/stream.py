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

"""Byte-range playout of a session's main file.

This module knows nothing about the web framework. The HTTP layer asks a
Responder to prepare a Playout (status, headers and a lazy body) and maps
the errors raised here to error responses.
"""

import dataclasses
import logging
import mimetypes
import time
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import Iterator
from typing import Optional
from typing import Tuple

import werkzeug.datastructures
import werkzeug.http

from magnetplay import session as session_lib

_LOG = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

DLNA_HEADERS = {
    "transferMode.dlna.org": "Streaming",
    "contentFeatures.dlna.org": (
        "DLNA.ORG_OP=01;DLNA.ORG_CI=0;"
        "DLNA.ORG_FLAGS=01700000000000000000000000000000"
    ),
}


class Error(Exception):

    pass


class RangeUnsatisfiable(Error):
    def __init__(self, length: int) -> None:
        super().__init__(f"range not satisfiable for {length} bytes")
        self.length = length


def resolve_range(
    header: Optional[str], length: int
) -> Optional[Tuple[int, int]]:
    """Interprets a Range header against a file length.

    Only the first range of a multi-range header is honored. Headers that
    can't be parsed, or that aren't in bytes, are ignored, as HTTP allows.

    Returns:
        None if the whole file should be served, otherwise the half-open
            (start, stop) byte range to serve. stop is clipped to length.

    Raises:
        RangeUnsatisfiable: If the range doesn't overlap [0, length).
    """
    if not header:
        return None
    units, sep, specs = header.partition("=")
    if not sep:
        return None
    # werkzeug rejects a whole header whose ranges are out of order, so hand
    # it just the first one
    first = specs.split(",", 1)[0].strip()
    # werkzeug reads "-0" as the whole file, but an empty suffix selects
    # nothing
    if first[:1] == "-" and first[1:].isdigit() and int(first[1:]) == 0:
        if units.strip().lower() != "bytes":
            return None
        raise RangeUnsatisfiable(length)
    parsed = werkzeug.http.parse_range_header(f"{units}={first}")
    if parsed is None or parsed.units != "bytes" or not parsed.ranges:
        return None
    start, stop = parsed.ranges[0]
    if start < 0:
        # Suffix range: the last -start bytes
        if length == 0:
            raise RangeUnsatisfiable(length)
        return max(length + start, 0), length
    if start >= length:
        raise RangeUnsatisfiable(length)
    if stop is None or stop > length:
        stop = length
    return start, stop


class ServingMeter:
    """Counts delivered bytes, and fires once when playback looks steady.

    The count is sampled at most once per interval while bytes flow, and
    once more by finish(). The first sample that finds more than threshold
    bytes delivered calls on_serving.
    """

    def __init__(
        self,
        *,
        threshold: int,
        interval: float,
        on_serving: Callable[[], Any],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.interval = interval
        self.bytes = 0
        self._on_serving = on_serving
        self._clock = clock
        self._last_sample = clock()
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def feed(self, count: int) -> None:
        self.bytes += count
        if self._fired:
            return
        now = self._clock()
        if now - self._last_sample < self.interval:
            return
        self._last_sample = now
        self._sample()

    def finish(self) -> None:
        """Takes a last sample at the end of a transfer."""
        if not self._fired:
            self._sample()

    def _sample(self) -> None:
        if self.bytes > self.threshold:
            self._fired = True
            self._on_serving()


def metered(chunks: Iterable[bytes], meter: ServingMeter) -> Iterator[bytes]:
    try:
        for chunk in chunks:
            meter.feed(len(chunk))
            yield chunk
    finally:
        try:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        finally:
            meter.finish()


@dataclasses.dataclass
class Playout:

    status: int
    headers: Dict[str, str]
    start: int
    stop: int
    body: Iterator[bytes]


class Responder:
    def __init__(
        self,
        session: session_lib.Session,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._clock = clock

    def prepare(self, range_header: Optional[str] = None) -> Playout:
        """Prepares to stream the session's main file.

        Nothing is read from the engine until the body is iterated.

        Raises:
            session.NotYetReady: If the session is still fetching metadata.
            session.MetadataTimeout: If the session failed.
            RangeUnsatisfiable: If the requested range is out of bounds.
        """
        main_file = self._session.get_main_file()
        length = main_file.length
        content_type, _ = mimetypes.guess_type(main_file.path)

        headers = {
            "Accept-Ranges": "bytes",
            "Content-Type": content_type or DEFAULT_CONTENT_TYPE,
        }
        headers.update(DLNA_HEADERS)

        byte_range = resolve_range(range_header, length)
        if byte_range is None:
            status = 200
            start, stop = 0, length
        else:
            status = 206
            start, stop = byte_range
            content_range = werkzeug.datastructures.ContentRange(
                "bytes", start, stop, length
            )
            headers["Content-Range"] = content_range.to_header()
        headers["Content-Length"] = str(stop - start)

        settings = self._session.settings
        meter = ServingMeter(
            threshold=settings.serving_threshold,
            interval=settings.serving_interval,
            on_serving=self._session.mark_serving,
            clock=self._clock,
        )
        body = metered(self._session.open_stream(start, stop), meter)
        _LOG.debug(
            "%s: playing %s [%d, %d)",
            self._session.name,
            main_file.path,
            start,
            stop,
        )
        return Playout(
            status=status, headers=headers, start=start, stop=stop, body=body
        )
