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


import concurrent.futures
import threading
from typing import List
import unittest

from magnetplay import config as config_lib
from magnetplay import magnet as magnet_lib
from magnetplay import registry as registry_lib
from magnetplay import session as session_lib

from . import fake
from . import lib


class TestParseSettings(unittest.TestCase):
    def test_defaults(self):
        config = config_lib.Config()

        settings = registry_lib.parse_settings(config)

        self.assertEqual(settings, session_lib.Settings())
        self.assertEqual(config["stream_pause_delay"], 3)
        self.assertEqual(config["stream_keep_data"], False)

    def test_override(self):
        config = config_lib.Config(
            stream_preload_ratio=0.5,
            stream_pause_delay=1,
            stream_keep_data=True,
        )

        settings = registry_lib.parse_settings(config)

        self.assertEqual(settings.preload_ratio, 0.5)
        self.assertEqual(settings.pause_delay, 1.0)
        self.assertTrue(settings.keep_data)

    def test_invalid(self):
        for key, value in (
            ("stream_preload_ratio", 1.5),
            ("stream_preload_ratio", -0.1),
            ("stream_pause_delay", "3"),
            ("stream_remove_delay", -1),
            ("stream_keep_data", 0),
            ("stream_serving_threshold", -1),
            ("stream_serving_threshold", 1.5),
        ):
            with self.subTest(key=key, value=value):
                with self.assertRaises(config_lib.InvalidConfigError):
                    registry_lib.parse_settings(
                        config_lib.Config({key: value})
                    )


class BlockingOpener(fake.FakeOpener):
    """Blocks opening one torrent until released."""

    def __init__(self, info_hash: str) -> None:
        super().__init__()
        self.info_hash = info_hash
        self.entered = threading.Event()
        self.release = threading.Event()
        self.failures: List[Exception] = []

    def open(self, magnet, channel):
        if magnet.info_hash == self.info_hash:
            self.entered.set()
            assert self.release.wait(timeout=5)
        if self.failures:
            raise self.failures.pop(0)
        return super().open(magnet, channel)


class RegistryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.scheduler = fake.ManualScheduler()
        self.opener = fake.FakeOpener()
        self.config = config_lib.Config()
        self.registry = registry_lib.Registry(
            opener=self.opener, scheduler=self.scheduler, config=self.config
        )

    def tearDown(self) -> None:
        self.registry.shutdown()


class TestRegistry(RegistryTestCase):
    def test_get_or_create(self):
        session = self.registry.get_or_create(fake.magnet_link())

        self.assertEqual(session.info_hash, fake.INFO_HASH)
        self.assertTrue(session.is_started())
        self.assertIs(self.registry.get(fake.INFO_HASH), session)
        self.assertEqual(len(self.registry), 1)
        self.assertEqual(session.connections, 0)
        self.assertEqual(len(self.opener.engines), 1)

    def test_same_torrent_same_session(self):
        first = self.registry.get_or_create(fake.magnet_link(name="a"))
        second = self.registry.get_or_create(fake.magnet_link(name="b"))

        self.assertIs(first, second)
        self.assertEqual(len(self.opener.engines), 1)

    def test_distinct_torrents(self):
        first = self.registry.get_or_create(fake.magnet_link())
        second = self.registry.get_or_create(
            fake.magnet_link(fake.OTHER_INFO_HASH)
        )

        self.assertIsNot(first, second)
        self.assertEqual(len(self.registry), 2)

    def test_invalid_link_creates_nothing(self):
        with self.assertRaises(magnet_lib.InvalidMagnetLink):
            self.registry.get_or_create("not a magnet link")
        with self.assertRaises(magnet_lib.InvalidMagnetLink):
            self.registry.acquire(None)

        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.opener.engines, [])

    def test_acquire(self):
        session = self.registry.acquire(fake.magnet_link())
        self.assertEqual(session.connections, 1)

        again = self.registry.acquire(fake.magnet_link())
        self.assertIs(again, session)
        self.assertEqual(session.connections, 2)

    def test_get_missing(self):
        self.assertIsNone(self.registry.get(fake.INFO_HASH))

    def test_list(self):
        self.assertEqual(self.registry.list(), [])
        self.registry.get_or_create(fake.magnet_link(name="first"))
        self.registry.get_or_create(
            fake.magnet_link(fake.OTHER_INFO_HASH, name="second")
        )

        names = sorted(info["dn"] for info in self.registry.list())

        self.assertEqual(names, ["first", "second"])

    def test_settings_from_config(self):
        self.config["stream_keep_data"] = True
        self.registry.set_config(self.config)

        session = self.registry.get_or_create(fake.magnet_link())

        self.assertTrue(session.settings.keep_data)

    def test_invalid_config_keeps_settings(self):
        config = config_lib.Config(stream_pause_delay=-1)
        with self.assertRaises(config_lib.InvalidConfigError):
            self.registry.set_config(config)
        self.assertEqual(self.registry.settings, session_lib.Settings())


class TestRemoval(RegistryTestCase):
    def test_idle_session_removed(self):
        session = self.registry.acquire(fake.magnet_link())
        session.remove_connection()

        self.scheduler.advance(3 + 5)

        self.assertTrue(session.is_destroyed())
        self.assertIsNone(self.registry.get(fake.INFO_HASH))
        self.assertEqual(len(self.registry), 0)
        engine = self.opener.engines[0]
        self.assertEqual(engine.stop_count, 1)
        self.assertEqual(engine.delete_count, 1)

    def test_recreated_after_removal(self):
        session = self.registry.acquire(fake.magnet_link())
        session.remove_connection()
        self.scheduler.advance(3 + 5)

        replacement = self.registry.acquire(fake.magnet_link())

        self.assertIsNot(replacement, session)
        self.assertFalse(replacement.is_destroyed())
        self.assertEqual(replacement.connections, 1)
        self.assertEqual(len(self.opener.engines), 2)

    def test_remove_ignores_replaced_session(self):
        session = self.registry.get_or_create(fake.magnet_link())
        stale = lib.create_session(scheduler=self.scheduler)

        self.registry.remove(stale)

        self.assertIs(self.registry.get(fake.INFO_HASH), session)

    def test_replaced_while_stopping(self):
        session = self.registry.acquire(fake.magnet_link())
        engine = self.opener.engines[0]
        entered = concurrent.futures.Future()
        release = concurrent.futures.Future()

        def slow_stop():
            entered.set_result(None)
            release.result(timeout=5)

        engine.stop = slow_stop  # type: ignore
        session.remove_connection()

        with concurrent.futures.ThreadPoolExecutor() as executor:
            expire = executor.submit(self.scheduler.advance, 3 + 5)
            entered.result(timeout=5)
            acquiring = executor.submit(
                self.registry.acquire, fake.magnet_link()
            )
            # The dying session stays registered until its engine stops
            done, _ = concurrent.futures.wait([acquiring], timeout=0.1)
            self.assertEqual(done, set())
            self.assertIs(self.registry.get(fake.INFO_HASH), session)

            release.set_result(None)
            expire.result(timeout=5)
            replacement = acquiring.result(timeout=5)

        self.assertIsNot(replacement, session)
        self.assertEqual(len(self.opener.engines), 2)
        self.assertEqual(replacement.connections, 1)


class TestShutdown(RegistryTestCase):
    def test_shutdown(self):
        sessions = [
            self.registry.get_or_create(fake.magnet_link()),
            self.registry.acquire(fake.magnet_link(fake.OTHER_INFO_HASH)),
        ]

        self.assertTrue(self.registry.shutdown())

        for session in sessions:
            self.assertTrue(session.is_destroyed())
            self.assertFalse(session.is_alive())
        self.assertEqual(len(self.registry), 0)
        for engine in self.opener.engines:
            self.assertEqual(engine.stop_count, 1)

    def test_refuses_after_shutdown(self):
        self.registry.shutdown()

        with self.assertRaises(registry_lib.ShutdownError):
            self.registry.get_or_create(fake.magnet_link())
        with self.assertRaises(registry_lib.ShutdownError):
            self.registry.acquire(fake.magnet_link())

    def test_shutdown_twice(self):
        self.registry.get_or_create(fake.magnet_link())
        self.registry.shutdown()
        self.registry.shutdown()

    def test_shutdown_timeout(self):
        session = self.registry.get_or_create(fake.magnet_link())
        unblock = threading.Event()
        self.opener.engines[0].stop = unblock.wait  # type: ignore

        self.assertFalse(self.registry.shutdown(timeout=0.1))
        self.assertFalse(session.wait_destroyed(timeout=0))

        unblock.set()
        self.assertTrue(session.wait_destroyed(timeout=5))
        self.assertEqual(len(self.registry), 0)

    def test_shutdown_waits_for_expiring_session(self):
        session = self.registry.acquire(fake.magnet_link())
        engine = self.opener.engines[0]
        entered = threading.Event()
        release = threading.Event()

        def slow_stop():
            entered.set()
            assert release.wait(timeout=5)

        engine.stop = slow_stop  # type: ignore
        session.remove_connection()

        with concurrent.futures.ThreadPoolExecutor() as executor:
            expire = executor.submit(self.scheduler.advance, 3 + 5)
            self.assertTrue(entered.wait(timeout=5))

            self.assertFalse(self.registry.shutdown(timeout=0.1))
            shutting_down = executor.submit(self.registry.shutdown)
            done, _ = concurrent.futures.wait([shutting_down], timeout=0.1)
            self.assertEqual(done, set())

            release.set()
            self.assertTrue(shutting_down.result(timeout=5))
            expire.result(timeout=5)

        self.assertTrue(session.wait_destroyed(timeout=0))
        self.assertEqual(engine.delete_count, 1)
        self.assertEqual(len(self.registry), 0)


class TestOpening(RegistryTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.opener = BlockingOpener(fake.INFO_HASH)
        self.registry = registry_lib.Registry(
            opener=self.opener, scheduler=self.scheduler, config=self.config
        )

    def tearDown(self) -> None:
        self.opener.release.set()
        super().tearDown()

    def test_opening_blocks_nobody_else(self):
        with concurrent.futures.ThreadPoolExecutor() as executor:
            first = executor.submit(self.registry.acquire, fake.magnet_link())
            self.assertTrue(self.opener.entered.wait(timeout=5))

            listing = executor.submit(self.registry.list)
            self.assertEqual(listing.result(timeout=1), [])
            other = executor.submit(
                self.registry.acquire, fake.magnet_link(fake.OTHER_INFO_HASH)
            )
            self.assertEqual(other.result(timeout=1).connections, 1)

            second = executor.submit(self.registry.acquire, fake.magnet_link())
            done, _ = concurrent.futures.wait([second], timeout=0.1)
            self.assertEqual(done, set())

            self.opener.release.set()
            session = first.result(timeout=5)
            self.assertIs(second.result(timeout=5), session)

        self.assertEqual(session.connections, 2)
        self.assertEqual(len(self.opener.engines), 2)
        self.assertEqual(len(self.registry), 2)

    def test_open_failure(self):
        self.opener.release.set()
        self.opener.failures.append(OSError("no space"))

        with self.assertRaises(OSError):
            self.registry.acquire(fake.magnet_link())
        self.assertEqual(len(self.registry), 0)

        session = self.registry.acquire(fake.magnet_link())

        self.assertEqual(session.connections, 1)
        self.assertEqual(len(self.opener.engines), 1)

    def test_shutdown_waits_for_opening(self):
        with concurrent.futures.ThreadPoolExecutor() as executor:
            opening = executor.submit(
                self.registry.acquire, fake.magnet_link()
            )
            self.assertTrue(self.opener.entered.wait(timeout=5))

            shutting_down = executor.submit(self.registry.shutdown)
            done, _ = concurrent.futures.wait([shutting_down], timeout=0.1)
            self.assertEqual(done, set())

            self.opener.release.set()
            self.assertTrue(shutting_down.result(timeout=5))
            with self.assertRaises(registry_lib.ShutdownError):
                opening.result(timeout=5)

        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.opener.engines[0].stop_count, 1)
