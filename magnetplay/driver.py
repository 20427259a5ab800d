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

"""Pumps libtorrent alerts and routes them to per-torrent handlers."""

import logging
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import List

import libtorrent as lt

from magnetplay import ltpy
from magnetplay import ltsession
from magnetplay import task as task_lib

_LOG = logging.getLogger(__name__)

Handler = Callable[[lt.alert], Any]

ALERT_MASK = (
    lt.alert.category_t.error_notification
    | lt.alert.category_t.status_notification
    | lt.alert.category_t.storage_notification
    | lt.alert.category_t.piece_progress_notification
)


def log_alert(
    alert: lt.alert, message: str = "", args: Iterable[Any] = (), method=None
) -> None:
    prefix = "%s"
    prefix_args = [alert.__class__.__name__]
    torrent_name = getattr(alert, "torrent_name", None)
    error = getattr(alert, "error", None)
    if torrent_name and torrent_name not in alert.message():
        prefix += ": %s"
        prefix_args += [torrent_name]
    if alert.message():
        prefix += ": %s"
        prefix_args += [alert.message()]
    if error and error.value():
        prefix += " [%s (%s %d)]"
        prefix_args += [
            error.message(),
            error.category().name(),
            error.value(),
        ]
        if method is None:
            method = _LOG.error
    if method is None:
        method = _LOG.debug

    if message:
        message = prefix + ": " + message
    else:
        message = prefix

    method(message, *prefix_args, *args)


class Error(Exception):

    pass


class DriverShutdown(Error):

    pass


class AlertDriver(task_lib.Task):
    """Delivers each torrent alert to the handler registered for its torrent.

    Handlers run on the driver thread, in alert order. They must not block.
    """

    ABORT_CHECK_INTERVAL = 1.0

    def __init__(self, *, session_service: ltsession.SessionService) -> None:
        super().__init__(title="AlertDriver", thread_name="alert-driver")
        self._session = session_service.session
        self._handlers: Dict[str, Handler] = {}

    def register(self, info_hash: str, handler: Handler) -> None:
        with self._lock:
            if self._terminated.is_set():
                raise DriverShutdown()
            self._handlers[info_hash] = handler

    def unregister(self, info_hash: str, handler: Handler) -> None:
        with self._lock:
            if self._handlers.get(info_hash) == handler:
                del self._handlers[info_hash]

    def _terminate(self) -> None:
        pass

    def _dispatch(self, alerts: List[lt.alert]) -> None:
        for alert in alerts:
            log_alert(alert)
            if not isinstance(alert, lt.torrent_alert):
                continue
            info_hash = ltpy.get_alert_info_hash(alert)
            with self._lock:
                handler = self._handlers.get(info_hash)
            if handler is None:
                continue
            try:
                handler(alert)
            except Exception:
                _LOG.exception("handling %s", alert.__class__.__name__)

    def pump_alerts(self) -> None:
        with ltpy.translate_exceptions():
            alerts = self._session.pop_alerts()
        self._dispatch(alerts)

    def _run(self) -> None:
        while not self._terminated.is_set():
            self.pump_alerts()
            with ltpy.translate_exceptions():
                self._session.wait_for_alert(
                    int(self.ABORT_CHECK_INTERVAL * 1000)
                )
        self._log_terminate()
        # Deliver whatever is left, so in-flight removals complete
        self.pump_alerts()
