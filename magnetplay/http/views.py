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

import logging
import time
from typing import Any
from typing import Callable

import flask
import werkzeug.exceptions

from magnetplay import magnet as magnet_lib
from magnetplay import registry as registry_lib
from magnetplay import session as session_lib
from magnetplay import stream as stream_lib
from magnetplay import util

from . import util as http_util

_LOG = logging.getLogger(__name__)


class StreamBlueprint(http_util.Blueprint):
    def __init__(
        self,
        registry: registry_lib.Registry,
        *,
        on_shutdown: Callable[[], Any] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        super().__init__("stream", __name__)
        self.registry = registry
        self._on_shutdown = on_shutdown
        self._sleep = sleep

    def acquire(self) -> session_lib.Session:
        return self.registry.acquire(flask.request.args.get("magnet_link"))

    @http_util.errorhandler(magnet_lib.InvalidMagnetLink)
    def on_invalid_magnet_link(self, exc: Exception):
        return werkzeug.exceptions.BadRequest(str(exc)).get_response()

    @http_util.errorhandler(registry_lib.ShutdownError)
    def on_shutdown_error(self, _exc: Exception):
        return werkzeug.exceptions.ServiceUnavailable().get_response()

    @http_util.errorhandler(session_lib.MetadataTimeout)
    def on_metadata_timeout(self, exc: Exception):
        return werkzeug.exceptions.NotFound(str(exc)).get_response()

    @http_util.errorhandler(stream_lib.RangeUnsatisfiable)
    def on_range_unsatisfiable(self, exc: stream_lib.RangeUnsatisfiable):
        return werkzeug.exceptions.RequestedRangeNotSatisfiable(
            length=exc.length
        ).get_response()

    @http_util.route("/")
    def list_sessions(self):
        return flask.jsonify(self.registry.list())

    @http_util.route("/add")
    def add(self):
        session = self.acquire()
        try:
            return flask.jsonify(session.get_info())
        finally:
            session.remove_connection()

    @http_util.route("/video")
    def video(self):
        session = self.acquire()
        # The exchange may end by completion, error or disconnect, and some
        # of those paths overlap
        release = util.Once(session.remove_connection)
        try:
            response = self._video_response(session)
        except BaseException:
            release()
            raise
        response.call_on_close(release)
        return response

    def _video_response(self, session: session_lib.Session) -> flask.Response:
        responder = stream_lib.Responder(session)
        try:
            playout = responder.prepare(flask.request.headers.get("Range"))
        except session_lib.NotYetReady:
            self._sleep(session.settings.retry_delay)
            return flask.redirect(flask.request.url, code=307)
        return flask.Response(
            playout.body,
            status=playout.status,
            headers=playout.headers,
            direct_passthrough=True,
        )

    @http_util.route("/shutdown")
    def shutdown(self):
        _LOG.info("shutdown requested")
        self.registry.shutdown()
        if self._on_shutdown is not None:
            self._on_shutdown()
        return flask.Response("Stopping\n", mimetype="text/plain")
