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

"""The set of live streaming sessions, keyed by info hash.

Lock order: the registry lock may be held while taking a session lock, never
the other way around. A destroying session unregisters itself without
holding its own lock.
"""

import concurrent.futures
import contextlib
import logging
import threading
import time
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional

from magnetplay import config as config_lib
from magnetplay import engine as engine_lib
from magnetplay import magnet as magnet_lib
from magnetplay import session as session_lib
from magnetplay import timers
from magnetplay import types

_LOG = logging.getLogger(__name__)


class Error(Exception):

    pass


class ShutdownError(Error):

    pass


def parse_settings(config: config_lib.Config) -> session_lib.Settings:
    config.setdefault("stream_preload_ratio", 0.001)
    config.setdefault("stream_pause_delay", 3)
    config.setdefault("stream_remove_delay", 5)
    config.setdefault("stream_metadata_timeout", 20)
    config.setdefault("stream_keep_data", False)
    config.setdefault("stream_serving_threshold", 10 * 1024 * 1024)
    config.setdefault("stream_serving_interval", 1)
    config.setdefault("stream_retry_delay", 1)

    preload_ratio = config.require_non_negative("stream_preload_ratio")
    if preload_ratio > 1:
        raise config_lib.InvalidConfigError(
            f'"stream_preload_ratio": {preload_ratio!r} is greater than 1'
        )
    serving_threshold = config.require_int("stream_serving_threshold")
    if serving_threshold < 0:
        raise config_lib.InvalidConfigError(
            f'"stream_serving_threshold": {serving_threshold!r} is negative'
        )

    return session_lib.Settings(
        preload_ratio=preload_ratio,
        pause_delay=config.require_non_negative("stream_pause_delay"),
        remove_delay=config.require_non_negative("stream_remove_delay"),
        metadata_timeout=config.require_non_negative(
            "stream_metadata_timeout"
        ),
        keep_data=config.require_bool("stream_keep_data"),
        serving_threshold=serving_threshold,
        serving_interval=config.require_non_negative(
            "stream_serving_interval"
        ),
        retry_delay=config.require_non_negative("stream_retry_delay"),
    )


class Registry(config_lib.HasConfig):
    def __init__(
        self,
        *,
        opener: engine_lib.Opener,
        scheduler: timers.Scheduler = None,
        config: config_lib.Config = None,
    ) -> None:
        if scheduler is None:
            scheduler = timers.ThreadingScheduler()
        if config is None:
            config = config_lib.Config()
        self._opener = opener
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._sessions: Dict[types.InfoHash, session_lib.Session] = {}
        self._pending: Dict[types.InfoHash, concurrent.futures.Future] = {}
        self._closed = False
        self.settings = session_lib.Settings()

        self.set_config(config)

    @contextlib.contextmanager
    def stage_config(self, config: config_lib.Config) -> Iterator[None]:
        settings = parse_settings(config)
        with self._lock:
            yield
            self.settings = settings

    def _create(
        self,
        magnet: magnet_lib.Magnet,
        settings: session_lib.Settings,
        pending: concurrent.futures.Future,
    ) -> None:
        # Opening an engine may block, e.g. on the removal of a previous
        # engine for the same torrent. The pending future holds the key.
        try:
            session = session_lib.Session(
                magnet=magnet,
                opener=self._opener,
                scheduler=self._scheduler,
                settings=settings,
                on_destroy=self.remove,
            )
        except BaseException as exc:
            with self._lock:
                del self._pending[magnet.info_hash]
            pending.set_exception(exc)
            raise
        with self._lock:
            del self._pending[magnet.info_hash]
            # Registered even after shutdown(), which waits on pending
            # creations and then destroys what they made
            self._sessions[magnet.info_hash] = session
            session.start()
        pending.set_result(session)

    def _lookup(
        self, magnet_link: Optional[str], *, attach: bool
    ) -> session_lib.Session:
        magnet = magnet_lib.parse(magnet_link)
        while True:
            create = False
            with self._lock:
                if self._closed:
                    raise ShutdownError()
                session = self._sessions.get(magnet.info_hash)
                if session is None:
                    pending = self._pending.get(magnet.info_hash)
                    if pending is None:
                        pending = concurrent.futures.Future()
                        self._pending[magnet.info_hash] = pending
                        create = True
                        settings = self.settings
                elif attach:
                    if session.add_connection():
                        return session
                elif not session.is_destroyed():
                    return session
            if session is None:
                if create:
                    self._create(magnet, settings, pending)
                else:
                    # Another thread is creating it. If that fails, we try
                    # again ourselves.
                    concurrent.futures.wait([pending])
                continue
            # We found a session in the middle of destroying itself. Once it
            # has unregistered, the next pass creates its replacement.
            session.wait_destroyed()

    def get_or_create(self, magnet_link: Optional[str]) -> session_lib.Session:
        """Returns the live session for a magnet link, creating it if needed.

        Raises:
            magnet.InvalidMagnetLink: If the link can't be decoded. No session
                is created.
            ShutdownError: If the registry was shut down.
        """
        return self._lookup(magnet_link, attach=False)

    def acquire(self, magnet_link: Optional[str]) -> session_lib.Session:
        """Like get_or_create(), but also attaches one connection.

        The connection is attached before any concurrent destruction can
        complete, so the returned session is guaranteed live until the
        caller calls remove_connection().
        """
        return self._lookup(magnet_link, attach=True)

    def get(self, info_hash: types.InfoHash) -> Optional[session_lib.Session]:
        with self._lock:
            return self._sessions.get(info_hash)

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.get_info() for session in sessions]

    def remove(self, session: session_lib.Session) -> None:
        with self._lock:
            if self._sessions.get(session.info_hash) is session:
                del self._sessions[session.info_hash]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def shutdown(self, timeout: float = None) -> bool:
        """Destroys every session, and waits for all of them.

        Returns:
            False if some session was still being destroyed after timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        def remaining() -> Optional[float]:
            if deadline is None:
                return None
            return max(deadline - time.monotonic(), 0)

        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
        _, not_done = concurrent.futures.wait(pending, timeout=remaining())
        if not_done:
            _LOG.warning("timed out waiting for %d openings", len(not_done))
            return False
        with self._lock:
            sessions = list(self._sessions.values())
        _LOG.debug("destroying %d sessions", len(sessions))

        if sessions:
            executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=len(sessions), thread_name_prefix="destroy"
            )
            for session in sessions:
                executor.submit(session.destroy)
            executor.shutdown(wait=False)
        for session in sessions:
            # Some may have been destroyed concurrently by their own timers
            if not session.wait_destroyed(timeout=remaining()):
                _LOG.warning("timed out destroying %r", session)
                return False
            if session.is_started():
                session.join(timeout=remaining())
        return True
