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

from __future__ import annotations

import contextlib
import logging
import pathlib
import socket as socket_lib
from typing import Iterator
from typing import Optional

from magnetplay import config as config_lib
from magnetplay import driver as driver_lib
from magnetplay import http as http_lib
from magnetplay import ltengine
from magnetplay import ltsession
from magnetplay import registry as registry_lib
from magnetplay import task as task_lib
from magnetplay import timers

_LOG = logging.getLogger(__name__)


def get_save_path(
    config: config_lib.Config, config_dir: pathlib.Path
) -> pathlib.Path:
    config.setdefault("torrent_save_path", str(config_dir / "downloads"))
    return pathlib.Path(config.require_str("torrent_save_path"))


class App(task_lib.Task):

    # pylint: disable=too-many-instance-attributes

    def __init__(
        self, config_dir: pathlib.Path, *, scheduler: timers.Scheduler = None
    ):
        super().__init__(title="magnetplay")
        self._config_dir = config_dir
        default_config = False

        try:
            self._config = self._load_config()
        except FileNotFoundError:
            default_config = True
            self._config = config_lib.Config()

        self._save_path = get_save_path(self._config, config_dir)

        self._session_service = ltsession.SessionService(
            alert_mask=driver_lib.ALERT_MASK, config=self._config
        )
        self._session = self._session_service.session
        self._alert_driver = driver_lib.AlertDriver(
            session_service=self._session_service
        )
        self._opener = ltengine.Opener(
            session=self._session,
            alert_driver=self._alert_driver,
            save_path=self._save_path,
        )
        self.registry = registry_lib.Registry(
            opener=self._opener, scheduler=scheduler, config=self._config
        )
        self._httpd = http_lib.HTTPD(
            app=http_lib.create_app(self.registry, on_shutdown=self.terminate),
            config=self._config,
        )

        if default_config:
            self._save_config()

    @property
    def http_socket(self) -> Optional[socket_lib.socket]:
        return self._httpd.socket

    def _load_config(self) -> config_lib.Config:
        return config_lib.Config.from_config_dir(self._config_dir)

    def _save_config(self) -> None:
        self._config_dir.mkdir(parents=True, exist_ok=True)
        self._config.write_config_dir(self._config_dir)

    @contextlib.contextmanager
    def _stage_save_path(self, config: config_lib.Config) -> Iterator[None]:
        save_path = get_save_path(config, self._config_dir)
        yield
        if save_path != self._save_path:
            # Only affects torrents opened from now on
            self._save_path = save_path
            self._opener.save_path = save_path

    def _set_config(self, config: config_lib.Config) -> None:
        config_lib.set_config(
            config,
            self._session_service.stage_config,
            self._stage_save_path,
            self.registry.stage_config,
            self._httpd.stage_config,
        )
        self._config = config

    def reload_config(self) -> None:
        try:
            self._set_config(self._load_config())
        except (FileNotFoundError, config_lib.InvalidConfigError):
            _LOG.exception("reloading config")
        else:
            _LOG.info("config reloaded")

    def _terminate(self):
        pass

    def _run(self):
        self._add_child(self._alert_driver)
        self._add_child(self._httpd)

        self._terminated.wait()
        self._log_terminate()

        # Stop taking requests. Streaming responses still in flight unblock
        # once their sessions are destroyed below.
        self._httpd.terminate()

        # Destroying a session waits for libtorrent to remove its torrent,
        # which needs the alert driver
        self.registry.shutdown()
        self._httpd.join()

        # Libtorrent shutdown sequence
        self._session.pause()
        self._alert_driver.terminate()
        self._alert_driver.join()
