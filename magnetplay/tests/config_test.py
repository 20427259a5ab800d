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
import pathlib
import tempfile
from typing import Iterator
import unittest

from magnetplay import config as config_lib


class TestConfigDir(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        self.config_dir = pathlib.Path(self.tempdir.name)
        self.path = self.config_dir.joinpath(config_lib.FILENAME)

    def tearDown(self) -> None:
        self.tempdir.cleanup()

    def test_from_config_dir(self):
        self.path.write_text('{"http_bind_address": "::", "http_port": 80}')

        config = config_lib.Config.from_config_dir(self.config_dir)

        self.assertEqual(
            config,
            config_lib.Config(http_bind_address="::", http_port=80),
        )

    def test_from_config_dir_missing(self):
        with self.assertRaises(FileNotFoundError):
            config_lib.Config.from_config_dir(self.config_dir)

    def test_from_config_dir_invalid_json(self):
        self.path.write_text("invalid json")

        with self.assertRaises(config_lib.InvalidConfigError):
            config_lib.Config.from_config_dir(self.config_dir)

    def test_from_config_dir_not_an_object(self):
        self.path.write_text("[1, 2, 3]")

        with self.assertRaises(config_lib.InvalidConfigError):
            config_lib.Config.from_config_dir(self.config_dir)

    def test_write_config_dir(self):
        config = config_lib.Config(stream_keep_data=False, http_port=3001)

        config.write_config_dir(self.config_dir)

        self.assertEqual(
            self.path.read_text(),
            "{\n"
            '    "http_port": 3001,\n'
            '    "stream_keep_data": false\n'
            "}",
        )


class TestGetters(unittest.TestCase):
    def test_get_int(self):
        config = config_lib.Config(key=123)
        self.assertEqual(config.get_int("key"), 123)

    def test_get_int_missing(self):
        self.assertIsNone(config_lib.Config().get_int("key"))

    def test_get_int_invalid(self):
        config = config_lib.Config(key="not an int")
        with self.assertRaises(config_lib.InvalidConfigError):
            config.get_int("key")

    def test_get_int_rejects_bool(self):
        config = config_lib.Config(key=True)
        with self.assertRaises(config_lib.InvalidConfigError):
            config.get_int("key")

    def test_get_float_accepts_int(self):
        config = config_lib.Config(key=3)
        value = config.get_float("key")
        self.assertEqual(value, 3.0)
        self.assertIsInstance(value, float)

    def test_get_float_missing(self):
        self.assertIsNone(config_lib.Config().get_float("key"))

    def test_get_str_invalid(self):
        config = config_lib.Config(key=123)
        with self.assertRaises(config_lib.InvalidConfigError):
            config.get_str("key")

    def test_get_bool_invalid(self):
        config = config_lib.Config(key=1)
        with self.assertRaises(config_lib.InvalidConfigError):
            config.get_bool("key")

    def test_require_int_missing(self):
        with self.assertRaises(config_lib.InvalidConfigError):
            config_lib.Config().require_int("key")

    def test_require_str(self):
        config = config_lib.Config(key="value")
        self.assertEqual(config.require_str("key"), "value")

    def test_require_bool(self):
        config = config_lib.Config(key=False)
        self.assertIs(config.require_bool("key"), False)

    def test_require_bool_missing(self):
        with self.assertRaises(config_lib.InvalidConfigError):
            config_lib.Config().require_bool("key")

    def test_require_float(self):
        config = config_lib.Config(key=0.5)
        self.assertEqual(config.require_float("key"), 0.5)

    def test_require_float_invalid(self):
        config = config_lib.Config(key="0.5")
        with self.assertRaises(config_lib.InvalidConfigError):
            config.require_float("key")

    def test_require_non_negative(self):
        config = config_lib.Config(zero=0, positive=2.5)
        self.assertEqual(config.require_non_negative("zero"), 0.0)
        self.assertEqual(config.require_non_negative("positive"), 2.5)

    def test_require_non_negative_negative(self):
        config = config_lib.Config(key=-1)
        with self.assertRaises(config_lib.InvalidConfigError):
            config.require_non_negative("key")


class Receiver(config_lib.HasConfig):
    def __init__(self):
        self.config = config_lib.Config()

    @contextlib.contextmanager
    def stage_config(self, config: config_lib.Config) -> Iterator[None]:
        config.setdefault("receiver_default", 1)
        yield
        self.config = config


class DummyException(Exception):

    pass


class FailReceiver:
    @contextlib.contextmanager
    def stage_config(self, _config: config_lib.Config) -> Iterator[None]:
        raise DummyException()
        yield  # pylint: disable=unreachable


class TestSetConfig(unittest.TestCase):
    def test_fail_prevents_all_updates(self):
        config = config_lib.Config(new=True)
        good_receiver = Receiver()
        fail_receiver = FailReceiver()

        with self.assertRaises(DummyException):
            config_lib.set_config(
                config, good_receiver.stage_config, fail_receiver.stage_config
            )
        self.assertEqual(good_receiver.config, config_lib.Config())

        # Order should be independent
        with self.assertRaises(DummyException):
            config_lib.set_config(
                config, fail_receiver.stage_config, good_receiver.stage_config
            )
        self.assertEqual(good_receiver.config, config_lib.Config())

    def test_success(self):
        config = config_lib.Config(new=True)
        receiver1 = Receiver()
        receiver2 = Receiver()

        config_lib.set_config(
            config, receiver1.stage_config, receiver2.stage_config
        )

        self.assertIs(receiver1.config, config)
        self.assertIs(receiver2.config, config)

    def test_defaults_filled_in(self):
        config = config_lib.Config()
        receiver = Receiver()

        receiver.set_config(config)

        self.assertEqual(config["receiver_default"], 1)

    def test_explicit_value_kept(self):
        config = config_lib.Config(receiver_default=5)
        receiver = Receiver()

        receiver.set_config(config)

        self.assertEqual(receiver.config["receiver_default"], 5)
