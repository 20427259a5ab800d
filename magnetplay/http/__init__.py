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

import contextlib
import http.server
import logging
import socket as socket_lib
import socketserver
import threading
from typing import Any
from typing import Callable
from typing import cast
from typing import Iterator
from typing import Optional
from typing import Tuple
import wsgiref.simple_server

import flask

from magnetplay import config as config_lib
from magnetplay import registry as registry_lib
from magnetplay import task as task_lib
from magnetplay.http import views

_LOG = logging.getLogger(__name__)


class _ThreadingWSGIServer(
    socketserver.ThreadingMixIn, wsgiref.simple_server.WSGIServer
):

    # Each streaming response runs on its own thread. server_close() waits
    # for them.
    daemon_threads = False


class _RequestHandler(wsgiref.simple_server.WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        _LOG.debug("%s - %s", self.address_string(), format % args)


def create_app(
    registry: registry_lib.Registry, *, on_shutdown: Callable[[], Any] = None
) -> flask.Flask:
    app = flask.Flask(__name__)
    blueprint = views.StreamBlueprint(registry, on_shutdown=on_shutdown)
    app.register_blueprint(blueprint.blueprint)
    return app


class HTTPD(task_lib.Task, config_lib.HasConfig):
    def __init__(self, *, app: flask.Flask, config: config_lib.Config):
        super().__init__(title="HTTPD", thread_name="httpd")
        self._lock: threading.Condition = threading.Condition(
            threading.RLock()
        )  # type: ignore

        self._flask = app

        self._address: Optional[Tuple[str, int]] = None
        self._server: Optional[socketserver.BaseServer] = None
        # The server currently inside serve_forever(), if any
        self._serving: Optional[socketserver.BaseServer] = None

        self.set_config(config)

    @contextlib.contextmanager
    def stage_config(self, config: config_lib.Config) -> Iterator[None]:
        config.setdefault("http_enabled", True)
        config.setdefault("http_bind_address", "localhost")
        config.setdefault("http_port", 3001)

        address: Optional[Tuple[str, int]] = None
        server: Optional[socketserver.BaseServer] = None

        # Only parse address and port if enabled
        if config.require_bool("http_enabled"):
            address = (
                config.require_str("http_bind_address"),
                config.require_int("http_port"),
            )

        with self._lock:
            if address != self._address and address is not None:
                host, port = address
                try:
                    server = wsgiref.simple_server.make_server(
                        host,
                        port,
                        self._flask,
                        server_class=_ThreadingWSGIServer,
                        handler_class=_RequestHandler,
                    )
                except OSError as exc:
                    raise config_lib.InvalidConfigError(
                        f"can't bind {host}:{port}: {exc}"
                    ) from exc

            try:
                yield
            except BaseException:
                if server is not None:
                    server.server_close()
                raise

            if self._terminated.is_set() or address == self._address:
                if server is not None:
                    server.server_close()
                return

            self._address = address
            self._stop_server_locked()
            self._server = server
            self._lock.notify_all()

    def _stop_server_locked(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        if server is self._serving:
            # serve_forever() returns, and _run() closes the server
            server.shutdown()
        else:
            server.server_close()

    def _terminate(self):
        with self._lock:
            self._stop_server_locked()
            self._lock.notify_all()

    @property
    def socket(self) -> Optional[socket_lib.socket]:
        with self._lock:
            if self._server is None:
                return None
            return cast(socket_lib.socket, self._server.socket)

    def _run(self):
        while True:
            with self._lock:
                while not self._terminated.is_set() and self._server is None:
                    self._lock.wait()
                if self._terminated.is_set():
                    break
                server = self._server
                self._serving = server
            if _LOG.isEnabledFor(logging.INFO):
                host, port = cast(
                    http.server.HTTPServer, server
                ).socket.getsockname()[:2]
                _LOG.info("web server listening on %s:%s", host, port)
            server.serve_forever()
            with self._lock:
                self._serving = None
            server.server_close()
            _LOG.info("web server shut down")
        self._log_terminate()
