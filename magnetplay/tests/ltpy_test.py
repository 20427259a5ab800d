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


import errno
import pathlib
import tempfile
import unittest

import libtorrent as lt

from magnetplay import ltpy

from . import lib
from . import tdummy


class TestExceptionFromErrorCode(unittest.TestCase):
    def test_no_error(self):
        ec = lt.error_code(0, lt.generic_category())
        self.assertIsNone(ltpy.exception_from_error_code(ec))

    def test_libtorrent_errors(self):
        def func(value):
            return ltpy.exception_from_error_code(
                lt.error_code(value, lt.libtorrent_category())
            )

        self.assertIsInstance(func(999), ltpy.LibtorrentError)
        self.assertIsInstance(
            func(ltpy.LibtorrentErrorValue.INVALID_TORRENT_HANDLE),
            ltpy.InvalidTorrentHandleError,
        )

    def test_os_errors(self):
        def func(value):
            return ltpy.exception_from_error_code(
                lt.error_code(value, lt.generic_category())
            )

        exc = func(errno.ECANCELED)
        self.assertIsInstance(exc, ltpy.CanceledError)
        self.assertIsInstance(exc, OSError)
        self.assertEqual(exc.errno, errno.ECANCELED)

        self.assertIsInstance(func(errno.ETIMEDOUT), TimeoutError)
        self.assertIsInstance(func(errno.ENOENT), ltpy.OSError)


class TestTranslateExceptions(unittest.TestCase):
    def test_invalid_torrent_handle(self):
        with self.assertRaises(ltpy.InvalidTorrentHandleError):
            with ltpy.translate_exceptions():
                raise RuntimeError(
                    lt.libtorrent_category().message(
                        ltpy.LibtorrentErrorValue.INVALID_TORRENT_HANDLE
                    )
                )

    def test_canceled(self):
        with self.assertRaises(ltpy.CanceledError):
            with ltpy.translate_exceptions():
                raise RuntimeError(
                    lt.generic_category().message(errno.ECANCELED)
                )

    def test_unknown_message_passes_through(self):
        with self.assertRaises(RuntimeError) as cm:
            with ltpy.translate_exceptions():
                raise RuntimeError("something else")
        self.assertNotIsInstance(cm.exception, ltpy.Error)

    def test_other_exceptions_pass_through(self):
        with self.assertRaises(KeyError):
            with ltpy.translate_exceptions():
                raise KeyError()


class TestInfoHashes(unittest.TestCase):
    def test_handle_and_alert(self):
        session = lib.create_isolated_session_service(
            alert_mask=lt.alert.category_t.status_notification
        ).session
        with tempfile.TemporaryDirectory() as tmpdir:
            atp = tdummy.DEFAULT.atp(pathlib.Path(tmpdir))
            handle = session.add_torrent(atp)

            self.assertEqual(
                ltpy.get_handle_info_hash(handle), tdummy.DEFAULT.info_hash
            )

            session.remove_torrent(handle)
            removed = None
            for _ in lib.loop_until_timeout(5, msg="torrent_removed_alert"):
                session.wait_for_alert(100)
                for alert in session.pop_alerts():
                    if isinstance(alert, lt.torrent_removed_alert):
                        removed = alert
                if removed is not None:
                    break

            # The handle is gone, but the alert still identifies the torrent
            self.assertEqual(
                ltpy.get_alert_info_hash(removed), tdummy.DEFAULT.info_hash
            )
