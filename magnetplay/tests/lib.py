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

"""Support code for other tests."""

import time
from typing import Any
from typing import Callable
from typing import Iterator

from magnetplay import config as config_lib
from magnetplay import ltsession
from magnetplay import magnet as magnet_lib
from magnetplay import session as session_lib
from magnetplay import timers

from . import fake


def create_isolated_config() -> config_lib.Config:
    return config_lib.Config(
        session_enable_dht=False,
        session_enable_lsd=False,
        session_enable_natpmp=False,
        session_enable_upnp=False,
        session_listen_interfaces="127.0.0.1:0",
        http_port=0,
    )


def create_isolated_session_service(
    *, alert_mask: int = 0
) -> ltsession.SessionService:
    return ltsession.SessionService(
        alert_mask=alert_mask, config=create_isolated_config()
    )


def create_session(
    *,
    scheduler: timers.Scheduler,
    opener: fake.FakeOpener = None,
    link: str = None,
    on_destroy: Callable[[session_lib.Session], Any] = None,
    **settings,
) -> session_lib.Session:
    if opener is None:
        opener = fake.FakeOpener()
    magnet = magnet_lib.parse(link or fake.magnet_link())
    return session_lib.Session(
        magnet=magnet,
        opener=opener,
        scheduler=scheduler,
        settings=session_lib.Settings(**settings),
        on_destroy=on_destroy,
    )


def loop_until_timeout(
    timeout: float, msg: str = "condition"
) -> Iterator[None]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        yield
    raise AssertionError(f"{msg} timed out")


def wait_for(
    condition: Callable[[], bool], timeout: float = 5, msg: str = "condition"
) -> None:
    for _ in loop_until_timeout(timeout, msg=msg):
        if condition():
            return
        time.sleep(0.01)
