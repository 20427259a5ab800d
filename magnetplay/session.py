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

"""One streaming session per torrent.

A Session owns a swarm engine and tracks the torrent through its states:

    metadata -> downloading -> finished
    metadata -> failed

Engine events arrive on the session's Channel and are applied in order on
the session's own thread. Connection counting, idle pause and idle removal
are delegated to an IdleController sharing the session lock.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import threading
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional
from typing import Sequence

from magnetplay import engine as engine_lib
from magnetplay import events as events_lib
from magnetplay import idle as idle_lib
from magnetplay import magnet as magnet_lib
from magnetplay import pieces
from magnetplay import task as task_lib
from magnetplay import timers
from magnetplay import types

_LOG = logging.getLogger(__name__)


class State(enum.Enum):

    METADATA = "metadata"
    DOWNLOADING = "downloading"
    FINISHED = "finished"
    FAILED = "failed"


class Error(Exception):

    pass


class NotYetReady(Error):

    pass


class MetadataTimeout(Error):

    pass


class EngineStopFailure(Error):

    pass


@dataclasses.dataclass(frozen=True)
class Settings:

    preload_ratio: float = 0.001
    pause_delay: float = 3.0
    remove_delay: float = 5.0
    metadata_timeout: float = 20.0
    keep_data: bool = False
    serving_threshold: int = 10 * 1024 * 1024
    serving_interval: float = 1.0
    retry_delay: float = 1.0


class Session(task_lib.Task):
    def __init__(
        self,
        *,
        magnet: magnet_lib.Magnet,
        opener: engine_lib.Opener,
        scheduler: timers.Scheduler,
        settings: Settings = None,
        on_destroy: Callable[[Session], Any] = None,
    ) -> None:
        super().__init__(
            title=f"session for {magnet.name}",
            thread_name=f"session-{magnet.info_hash[:8]}",
        )
        if settings is None:
            settings = Settings()
        self.magnet = magnet
        self.info_hash = magnet.info_hash
        self.name = magnet.name
        self.settings = settings
        self._scheduler = scheduler
        self._on_destroy = on_destroy

        self._state = State.METADATA
        self._exception: Optional[Exception] = None
        self._files: Sequence[types.FileRef] = ()
        self._main_file: Optional[types.FileRef] = None
        self._piece_map = pieces.PieceMap()
        self._piece_length = 0
        self._preload = 0
        self._serving = False
        self._metadata_timer: Optional[timers.Handle] = None
        self._destroyed = False
        self._destroy_done = threading.Event()
        self.stop_exception: Optional[Exception] = None

        self._preload_selector = pieces.PreloadSelector(
            ratio=settings.preload_ratio
        )
        self._idle = idle_lib.IdleController(
            lock=self._lock,
            scheduler=scheduler,
            pause_delay=settings.pause_delay,
            remove_delay=settings.remove_delay,
            on_pause=self._pause_locked,
            on_resume=self._resume_locked,
            on_expire=self.destroy,
            name=self.name,
        )
        self._channel = events_lib.Channel()
        self.engine = opener.open(magnet, self._channel)

    @property
    def state(self) -> State:
        with self._lock:
            return self._state

    @property
    def paused(self) -> bool:
        return self._idle.paused

    @property
    def connections(self) -> int:
        return self._idle.connections

    @property
    def serving(self) -> bool:
        with self._lock:
            return self._serving

    @property
    def exception(self) -> Optional[Exception]:
        with self._lock:
            return self._exception

    @property
    def main_file(self) -> Optional[types.FileRef]:
        with self._lock:
            return self._main_file

    @property
    def piece_map(self) -> pieces.PieceMap:
        with self._lock:
            return self._piece_map

    @property
    def preload(self) -> int:
        with self._lock:
            return self._preload

    def is_destroyed(self) -> bool:
        with self._lock:
            return self._destroyed

    def start(self) -> None:
        with self._lock:
            if self._state == State.METADATA and self._metadata_timer is None:
                self._metadata_timer = self._scheduler.call_later(
                    self.settings.metadata_timeout,
                    self._fire_metadata_timeout,
                    name="metadata",
                )
        super().start()
        _LOG.info("%s: ADDED", self.name)

    def _terminate(self) -> None:
        self._channel.close()

    def _run(self) -> None:
        for event in self._channel:
            self.handle_event(event)
        self._log_terminate()

    def handle_event(self, event: events_lib.Event) -> None:
        with self._lock:
            if self._destroyed:
                return
            if isinstance(event, events_lib.MetadataReady):
                self._on_metadata_locked(event)
            elif isinstance(event, events_lib.PieceVerified):
                self._on_piece_verified_locked(event.index)
            elif isinstance(event, events_lib.Idle):
                self._on_idle_locked()
            elif isinstance(event, events_lib.EngineError):
                self._on_engine_error_locked(event.exception)
            else:
                raise TypeError(event)

    def _cancel_metadata_timer_locked(self) -> None:
        if self._metadata_timer is not None:
            self._metadata_timer.cancel()
            self._metadata_timer = None

    def _on_metadata_locked(self, event: events_lib.MetadataReady) -> None:
        if self._state != State.METADATA:
            return
        self._cancel_metadata_timer_locked()
        self._files = tuple(event.files)
        # max() keeps the first of several equally large files
        self._main_file = max(self._files, key=lambda f: f.length)
        self._piece_length = event.piece_length
        self._piece_map = pieces.PieceMap(event.num_pieces)
        self._state = State.DOWNLOADING

        self.engine.select_file(self._main_file)
        self._preload = self._preload_selector.apply(
            self.engine, event.num_pieces
        )
        _LOG.info("%s: METADATA RECEIVED", self.name)

    def _on_piece_verified_locked(self, index: int) -> None:
        if self._state not in (State.DOWNLOADING, State.FINISHED):
            return
        if index < 0 or index >= len(self._piece_map):
            _LOG.warning("%s: verified unknown piece %d", self.name, index)
            return
        self._piece_map.set(index)

    def _on_idle_locked(self) -> None:
        # An idle engine while paused only means we withdrew the selection
        if self._state != State.DOWNLOADING or self._idle.paused:
            return
        self._state = State.FINISHED
        _LOG.info("%s: FINISHED", self.name)

    def _on_engine_error_locked(self, exception: Exception) -> None:
        if self._state != State.METADATA:
            _LOG.error("%s: engine error: %s", self.name, exception)
            return
        self._cancel_metadata_timer_locked()
        self._state = State.FAILED
        self._exception = exception
        _LOG.error("%s: FAILED: %s", self.name, exception)

    def _fire_metadata_timeout(self, handle: timers.Handle) -> None:
        with self._lock:
            if self._destroyed or handle is not self._metadata_timer:
                return
            self._metadata_timer = None
            if self._state != State.METADATA:
                return
            self._state = State.FAILED
            self._exception = MetadataTimeout(
                f"no metadata after {self.settings.metadata_timeout}s"
            )
            _LOG.info("%s: METADATA FAILED", self.name)

    def _pause_locked(self) -> bool:
        if self._main_file is None or self._state == State.FAILED:
            return False
        self.engine.deselect_file(self._main_file)
        _LOG.info("%s: PAUSED", self.name)
        return True

    def _resume_locked(self) -> None:
        if self._main_file is None:
            return
        self.engine.select_file(self._main_file)
        _LOG.info("%s: RESUMED", self.name)

    def add_connection(self) -> bool:
        """Attaches a consumer. Returns False if the session is destroyed."""
        return self._idle.add_connection()

    def remove_connection(self) -> None:
        self._idle.remove_connection()

    def mark_serving(self) -> None:
        with self._lock:
            if self._serving:
                return
            self._serving = True
        _LOG.info("%s: SERVING", self.name)

    def get_main_file(self) -> types.FileRef:
        """Returns the file to stream.

        Raises:
            NotYetReady: If metadata hasn't arrived yet.
            MetadataTimeout: If metadata never arrived, or the engine failed
                while fetching it.
        """
        with self._lock:
            if self._state == State.METADATA:
                raise NotYetReady(self.name)
            if self._state == State.FAILED:
                if isinstance(self._exception, MetadataTimeout):
                    raise self._exception
                raise MetadataTimeout(str(self._exception))
            assert self._main_file is not None
            return self._main_file

    def open_stream(self, start: int, stop: int) -> Iterator[bytes]:
        main_file = self.get_main_file()
        return self.engine.read(main_file, start, stop)

    def get_info(self) -> Dict[str, Any]:
        with self._lock:
            state = self._state
            info: Dict[str, Any] = {
                "dn": self.name,
                "info_hash": self.info_hash,
                "state": state.value,
                "paused": self._idle.paused,
                "serving": self._serving,
                "connections": self._idle.connections,
            }
            if self._exception is not None:
                info["error"] = str(self._exception)
            if state in (State.DOWNLOADING, State.FINISHED):
                files: List[Dict[str, Any]] = [
                    {
                        "path": f.path,
                        "size": f.length,
                        "main": f == self._main_file,
                    }
                    for f in self._files
                ]
                info.update(
                    files=files,
                    pieces=len(self._piece_map),
                    pieces_preload=self._preload,
                    piece_length=self._piece_length,
                    piece_map=self._piece_map.condense(),
                    video_ready=pieces.video_ready(
                        self._piece_map, self._preload
                    ),
                )

        # Engine stats may block; don't hold the session lock for them
        stats = self.engine.stats()
        info.update(
            downloaded=stats.downloaded,
            uploaded=stats.uploaded,
            download_speed=stats.download_rate / 1024,
            upload_speed=stats.upload_rate / 1024,
            peers=stats.peers,
        )
        return info

    def destroy(self, callback: Callable[[], Any] = None) -> bool:
        """Tears the session down. Only the first call has any effect.

        Returns:
            True if this call destroyed the session.
        """
        with self._lock:
            if self._destroyed:
                return False
            self._destroyed = True
            self._idle.close()
            self._cancel_metadata_timer_locked()
        self.terminate()
        try:
            self._stop_engine()
        finally:
            try:
                # Unregister only once the engine is gone
                if self._on_destroy is not None:
                    self._on_destroy(self)
            finally:
                self._destroy_done.set()
                if callback is not None:
                    try:
                        callback()
                    except Exception:
                        _LOG.exception(
                            "calling destroy callback for %r", self
                        )
        return True

    def _stop_engine(self) -> None:
        try:
            self.engine.stop()
            _LOG.info("%s: REMOVED", self.name)
            if not self.settings.keep_data:
                self.engine.delete_data()
                _LOG.info("%s: DELETED", self.name)
        except Exception as exc:
            failure = EngineStopFailure(f"{self.name}: {exc}")
            failure.__cause__ = exc
            self.stop_exception = failure
            _LOG.error("%s: engine stop failed", self.name, exc_info=failure)

    def wait_destroyed(self, timeout: float = None) -> bool:
        return self._destroy_done.wait(timeout=timeout)

    def __repr__(self) -> str:
        return f"<Session {self.info_hash} {self.name!r}>"
