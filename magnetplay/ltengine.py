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

"""The swarm engine, implemented with a shared libtorrent session.

Each engine wraps one torrent_handle. Alerts for the torrent arrive on the
AlertDriver thread and are translated into magnetplay.events on the
session's Channel.

Reads are served from libtorrent's piece cache with read_piece_alert. We ask
for a piece with set_piece_deadline(alert_when_available), which downloads
it with top priority if it's missing, and behaves like read_piece() if it's
already there.
"""

import collections
import concurrent.futures
import logging
import os
import pathlib
import threading
from typing import Any
from typing import Callable
from typing import Deque
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional
from typing import Tuple

import libtorrent as lt

from magnetplay import driver as driver_lib
from magnetplay import engine as engine_lib
from magnetplay import events as events_lib
from magnetplay import ltpy
from magnetplay import magnet as magnet_lib
from magnetplay import types
from magnetplay import util

_LOG = logging.getLogger(__name__)

_TOP_PRIORITY = 7
_DEFAULT_PRIORITY = 4
_DONT_DOWNLOAD = 0


class LibtorrentEngine(engine_lib.Engine):

    # Spacing between deadlines of sequential pieces, in milliseconds
    DEADLINE_GAP = 1000
    # How many pieces a reader requests ahead of the one it's waiting for
    READAHEAD = 4
    READ_TIMEOUT = 120.0
    STOP_TIMEOUT = 30.0

    def __init__(
        self,
        *,
        session: lt.session,
        handle: lt.torrent_handle,
        info_hash: types.InfoHash,
        alert_driver: driver_lib.AlertDriver,
        channel: events_lib.Channel,
        save_path: pathlib.Path,
        on_removed: Callable[["LibtorrentEngine"], Any] = None,
    ) -> None:
        self._session = session
        self._handle = handle
        self.info_hash = info_hash
        self._alert_driver = alert_driver
        self._channel = channel
        self.save_path = save_path
        self._on_removed = on_removed

        self._lock = threading.RLock()
        self._ti: Optional[lt.torrent_info] = None
        self._reads: Dict[int, List[concurrent.futures.Future]] = {}
        self._stopping = False
        self._removed = threading.Event()
        self._last_stats = types.Stats()

    @property
    def handle(self) -> lt.torrent_handle:
        return self._handle

    def is_stopping(self) -> bool:
        with self._lock:
            return self._stopping

    def handle_alert(self, alert: lt.alert) -> None:
        if isinstance(alert, lt.metadata_received_alert):
            self.check_metadata()
        elif isinstance(alert, lt.torrent_checked_alert):
            # Pieces found by checking files produce no piece_finished_alert
            self.check_metadata(rescan=True)
        elif isinstance(alert, lt.piece_finished_alert):
            with self._lock:
                # Pieces finished before metadata was sent are picked up by
                # the have_piece() scan in check_metadata()
                if self._ti is not None:
                    self._channel.feed(
                        events_lib.PieceVerified(alert.piece_index)
                    )
        elif isinstance(alert, lt.read_piece_alert):
            self._on_read_piece(alert)
        elif isinstance(alert, lt.torrent_finished_alert):
            self._on_finished()
        elif isinstance(alert, lt.torrent_error_alert):
            exception = ltpy.exception_from_alert(alert)
            if exception is None:
                exception = engine_lib.Error(alert.message())
            self._channel.feed(events_lib.EngineError(exception))
        elif isinstance(alert, lt.torrent_removed_alert):
            self._set_removed()

    def _scan_have_locked(self, ti: lt.torrent_info) -> List[int]:
        return [
            i for i in range(ti.num_pieces()) if self._handle.have_piece(i)
        ]

    def check_metadata(self, rescan: bool = False) -> None:
        """Sends MetadataReady once metadata is known.

        Later calls only re-announce the pieces we have, and only if rescan
        is set.
        """
        with self._lock:
            if self._stopping:
                return
            if self._ti is not None:
                if rescan:
                    with ltpy.translate_exceptions():
                        have = self._scan_have_locked(self._ti)
                    self._channel.feed(
                        *(events_lib.PieceVerified(i) for i in have)
                    )
                return
            with ltpy.translate_exceptions():
                ti = self._handle.torrent_file()
                if ti is None:
                    return
                fs = ti.files()
                files = tuple(
                    types.FileRef(
                        index=i,
                        path=fs.file_path(i),
                        offset=fs.file_offset(i),
                        length=fs.file_size(i),
                    )
                    for i in range(fs.num_files())
                )
                # Nothing downloads until the session selects something
                self._handle.prioritize_files([_DONT_DOWNLOAD] * len(files))
                have = self._scan_have_locked(ti)
            self._ti = ti
            self._channel.feed(
                events_lib.MetadataReady(
                    files=files,
                    num_pieces=ti.num_pieces(),
                    piece_length=ti.piece_length(),
                ),
                *(events_lib.PieceVerified(i) for i in have),
            )

    def _on_finished(self) -> None:
        # libtorrent also declares a torrent finished when nothing at all is
        # wanted, as right after we zero the file priorities
        with ltpy.translate_exceptions():
            status = self._handle.status()
        if status.total_wanted and status.total_wanted_done >= (
            status.total_wanted
        ):
            self._channel.feed(events_lib.Idle())

    def _get_ti(self) -> lt.torrent_info:
        with self._lock:
            if self._ti is None:
                raise engine_lib.Error("no metadata yet")
            return self._ti

    def select_range(
        self, start: int, stop: int, *, high_priority: bool = False
    ) -> None:
        priority = _TOP_PRIORITY if high_priority else _DEFAULT_PRIORITY
        with self._lock, ltpy.translate_exceptions():
            for seq, piece in enumerate(range(start, stop)):
                self._handle.piece_priority(piece, priority)
                if high_priority:
                    self._handle.set_piece_deadline(
                        piece, seq * self.DEADLINE_GAP
                    )

    def select_file(self, file: types.FileRef) -> None:
        with self._lock, ltpy.translate_exceptions():
            self._handle.file_priority(file.index, _DEFAULT_PRIORITY)

    def deselect_file(self, file: types.FileRef) -> None:
        with self._lock, ltpy.translate_exceptions():
            self._handle.file_priority(file.index, _DONT_DOWNLOAD)
            self._handle.clear_piece_deadlines()

    def _request_piece(self, piece: int) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._lock:
            if self._stopping:
                future.set_exception(engine_lib.EngineStopped())
                return future
            waiting = self._reads.setdefault(piece, [])
            waiting.append(future)
            if len(waiting) == 1:
                self._set_read_deadline_locked(piece)
        return future

    def _set_read_deadline_locked(self, piece: int) -> None:
        with ltpy.translate_exceptions():
            self._handle.set_piece_deadline(
                piece, 0, lt.deadline_flags_t.alert_when_available
            )

    def _on_read_piece(self, alert: lt.read_piece_alert) -> None:
        exception = ltpy.exception_from_alert(alert)
        with self._lock:
            if (
                isinstance(exception, ltpy.CanceledError)
                and not self._stopping
                and alert.piece in self._reads
            ):
                # Our deadline was cleared by a deselect, but someone is
                # still waiting for the piece
                self._set_read_deadline_locked(alert.piece)
                return
            futures = self._reads.pop(alert.piece, [])
        for future in futures:
            if exception is not None:
                future.set_exception(exception)
            else:
                future.set_result(bytes(alert.buffer))

    def read(
        self, file: types.FileRef, start: int, stop: int
    ) -> Iterator[bytes]:
        if start < 0 or stop > file.length or start > stop:
            raise ValueError(f"[{start}, {stop}) not in {file}")
        piece_length = self._get_ti().piece_length()
        chunks = list(
            util.enum_piecewise_ranges(
                piece_length, file.offset + start, file.offset + stop
            )
        )
        return self._iter_chunks(piece_length, chunks)

    def _iter_chunks(
        self, piece_length: int, chunks: List[Tuple[int, int, int]]
    ) -> Iterator[bytes]:
        pending: Deque[concurrent.futures.Future] = collections.deque()
        requested = 0
        for piece, lo, hi in chunks:
            while requested < len(chunks) and len(pending) <= self.READAHEAD:
                pending.append(self._request_piece(chunks[requested][0]))
                requested += 1
            try:
                data = pending.popleft().result(timeout=self.READ_TIMEOUT)
            except concurrent.futures.TimeoutError as exc:
                raise engine_lib.Error(
                    f"timed out waiting for piece {piece}"
                ) from exc
            base = piece * piece_length
            yield data[lo - base : hi - base]

    def stats(self) -> types.Stats:
        try:
            with ltpy.translate_exceptions():
                status = self._handle.status()
        except ltpy.InvalidTorrentHandleError:
            return self._last_stats
        stats = types.Stats(
            downloaded=status.total_payload_download,
            uploaded=status.total_payload_upload,
            download_rate=status.download_payload_rate,
            upload_rate=status.upload_payload_rate,
            peers=status.num_peers,
        )
        self._last_stats = stats
        return stats

    def stop(self) -> None:
        with self._lock:
            if not self._stopping:
                self._stopping = True
                futures = [f for fs in self._reads.values() for f in fs]
                self._reads.clear()
            else:
                futures = []
        for future in futures:
            future.set_exception(engine_lib.EngineStopped())
        try:
            with ltpy.translate_exceptions():
                self._session.remove_torrent(self._handle)
        except ltpy.InvalidTorrentHandleError:
            self._set_removed()
        if not self._removed.wait(timeout=self.STOP_TIMEOUT):
            # Later opens must not wait on this engine
            if self._on_removed is not None:
                self._on_removed(self)
            raise engine_lib.Error(f"{self.info_hash}: removal timed out")

    def wait_removed(self, timeout: float = None) -> bool:
        return self._removed.wait(timeout=timeout)

    def _set_removed(self) -> None:
        if self._removed.is_set():
            return
        self._removed.set()
        self._alert_driver.unregister(self.info_hash, self.handle_alert)
        if self._on_removed is not None:
            self._on_removed(self)

    def delete_data(self) -> None:
        if not self._removed.is_set():
            raise engine_lib.Error("delete_data() called before stop()")
        with self._lock:
            ti = self._ti
        paths: List[pathlib.Path] = [
            self.save_path.joinpath(f".{self.info_hash}.parts")
        ]
        if ti is not None:
            fs = ti.files()
            paths.extend(
                self.save_path.joinpath(fs.file_path(i))
                for i in range(fs.num_files())
            )
        dirs = set()
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            parent = path.parent
            while self.save_path in parent.parents:
                dirs.add(parent)
                parent = parent.parent
        # Deepest first, so parents are empty by the time we reach them
        for path in sorted(dirs, key=lambda p: len(p.parts), reverse=True):
            try:
                path.rmdir()
            except OSError:
                pass


class Opener(engine_lib.Opener):
    def __init__(
        self,
        *,
        session: lt.session,
        alert_driver: driver_lib.AlertDriver,
        save_path: pathlib.Path,
    ) -> None:
        self._session = session
        self._alert_driver = alert_driver
        self.save_path = save_path
        self._lock = threading.Lock()
        self._engines: Dict[types.InfoHash, LibtorrentEngine] = {}

    def _forget(self, engine: LibtorrentEngine) -> None:
        with self._lock:
            if self._engines.get(engine.info_hash) is engine:
                del self._engines[engine.info_hash]

    def open(
        self, magnet: magnet_lib.Magnet, channel: events_lib.Channel
    ) -> LibtorrentEngine:
        with self._lock:
            previous = self._engines.get(magnet.info_hash)
        if previous is not None:
            if not previous.is_stopping():
                raise engine_lib.Error(f"{magnet.info_hash} is already open")
            # A torrent can't be re-added until its old handle is gone
            if not previous.wait_removed(timeout=previous.STOP_TIMEOUT):
                raise engine_lib.Error(
                    f"{magnet.info_hash} is still being removed"
                )

        os.makedirs(self.save_path, exist_ok=True)
        with ltpy.translate_exceptions():
            atp = lt.parse_magnet_uri(magnet.uri)
            atp.save_path = str(self.save_path)
            handle = self._session.add_torrent(atp)
        engine = LibtorrentEngine(
            session=self._session,
            handle=handle,
            info_hash=magnet.info_hash,
            alert_driver=self._alert_driver,
            channel=channel,
            save_path=self.save_path,
            on_removed=self._forget,
        )
        with self._lock:
            self._engines[magnet.info_hash] = engine
        self._alert_driver.register(magnet.info_hash, engine.handle_alert)
        # Metadata may already be there, e.g. for a torrent in the cache
        engine.check_metadata()
        return engine
