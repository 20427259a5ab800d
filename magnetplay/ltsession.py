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

"""The process-wide libtorrent session, configured from session_* keys.

Any key named session_<name> overrides the libtorrent setting <name>. The
value must have the same type as libtorrent's default for that setting.
"""

import contextlib
import logging
import threading
from typing import Any
from typing import Dict
from typing import Iterator

import libtorrent as lt

from magnetplay import config as config_lib
from magnetplay import ltpy

_LOG = logging.getLogger(__name__)

# Finding peers for a bare magnet link needs the DHT, so we turn it on by
# default, unlike libtorrent
_DEFAULTS = {
    "session_enable_dht": True,
    "session_enable_lsd": True,
}

_OVERRIDES = {
    "alert_queue_size": 2**31 - 1,
}

_BLACKLIST = {
    "alert_mask",
    "alert_queue_size",
}


@contextlib.contextmanager
def _translate_exceptions():
    try:
        with ltpy.translate_exceptions():
            yield
    except (KeyError, TypeError, ltpy.Error) as exc:
        raise config_lib.InvalidConfigError(str(exc)) from exc


def parse_config(config: config_lib.Config) -> Dict[str, Any]:
    config.setdefault("session_settings_base", "default_settings")
    for key, value in _DEFAULTS.items():
        config.setdefault(key, value)

    settings_base_name = config.require_str("session_settings_base")
    if settings_base_name not in ("default_settings", "high_performance_seed"):
        raise config_lib.InvalidConfigError(
            f'no settings pack named "{settings_base_name}"'
        )
    settings: Dict[str, Any] = getattr(lt, settings_base_name)()

    for key, value in config.items():
        if not key.startswith("session_"):
            continue
        name = key[len("session_") :]
        if name == "settings_base":
            continue
        if name in _BLACKLIST:
            raise config_lib.InvalidConfigError(f'"{key}" can\'t be set')
        if name not in settings:
            raise config_lib.InvalidConfigError(f"no setting named {name}")
        if settings[name].__class__ != value.__class__:
            raise config_lib.InvalidConfigError(
                f'"{key}" should be {settings[name].__class__.__name__}, '
                f"not {value.__class__.__name__}"
            )
        settings[name] = value

    settings.update(_OVERRIDES)
    return settings


class SessionService(config_lib.HasConfig):
    """Owns the lt.session, and applies config changes to it.

    The alert mask is fixed at construction by whoever consumes alerts; the
    config can't change it.
    """

    def __init__(
        self, *, alert_mask: int = 0, config: config_lib.Config = None
    ):
        if config is None:
            config = config_lib.Config()
        self._lock = threading.Lock()
        self._alert_mask = alert_mask

        with _translate_exceptions():
            self._settings = parse_config(config)
            self._settings["alert_mask"] = alert_mask
            self.session = lt.session(self._settings)

    @property
    def alert_mask(self) -> int:
        return self._alert_mask

    def _apply_settings_locked(self, settings: Dict[str, Any]) -> None:
        deltas = {
            key: value
            for key, value in settings.items()
            if self._settings.get(key) != value
        }
        if not deltas:
            return
        _LOG.debug("applying settings: %s", sorted(deltas))
        with ltpy.translate_exceptions():
            self.session.apply_settings(deltas)
        self._settings = settings

    @contextlib.contextmanager
    def stage_config(self, config: config_lib.Config) -> Iterator[None]:
        with _translate_exceptions():
            settings = parse_config(config)
        settings["alert_mask"] = self._alert_mask

        with self._lock:
            yield
            self._apply_settings_locked(settings)
