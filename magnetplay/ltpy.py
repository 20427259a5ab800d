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

"""Typed exceptions for libtorrent's error_codes, and version shims.

libtorrent's python bindings raise a bare RuntimeError carrying only the
error message. We map messages back to error codes, and error codes to a
small exception hierarchy, so callers can catch e.g. an invalid torrent
handle without string matching.
"""

import builtins
import contextlib
import enum
import errno
from typing import Dict
from typing import Generator
from typing import Optional

import libtorrent as lt

GENERIC_CATEGORY = lt.generic_category()
SYSTEM_CATEGORY = lt.system_category()
LIBTORRENT_CATEGORY = lt.libtorrent_category()


class LibtorrentErrorValue(enum.IntEnum):

    INVALID_TORRENT_HANDLE = 20


class Error(RuntimeError):
    def __new__(cls, ec: lt.error_code):
        use_cls = _CATEGORY_NAME_TO_SUBCLASS.get(ec.category().name(), cls)
        if use_cls is OSError:
            return use_cls.__new__(use_cls, ec)
        if use_cls is LibtorrentError:
            return use_cls.__new__(use_cls, ec)
        return super().__new__(use_cls, ec)  # type: ignore

    def __init__(self, ec: lt.error_code):
        super().__init__(ec.value(), ec.message())
        self.ec = ec
        self.value = ec.value()
        self.category = ec.category()
        self.message = ec.message()

    def __str__(self) -> str:
        return self.message


class OSError(Error, builtins.OSError):
    def __new__(cls, ec: lt.error_code):
        # generic_category carries portable errno values; so does
        # system_category everywhere we run
        errno_ = ec.value()
        use_cls = _ERRNO_TO_OSERROR.get(errno_, cls)
        # builtins.OSError.__new__ is the only constructor that accepts
        # (errno, strerror) for an OSError subclass that overrides __new__
        return builtins.OSError.__new__(use_cls, ec.value(), ec.message())

    def __init__(self, ec: lt.error_code):
        self.ec = ec
        self.value = ec.value()
        self.category = ec.category()
        self.message = ec.message()

    def __str__(self) -> str:
        return builtins.OSError.__str__(self)


class TimeoutError(OSError, builtins.TimeoutError):
    pass


# Fired for read_piece_alerts whose piece deadline was reset
class CanceledError(OSError):
    pass


class LibtorrentError(Error):
    def __new__(cls, ec: lt.error_code):
        use_cls = cls
        if ec.category() == LIBTORRENT_CATEGORY:
            use_cls = _LIBTORRENT_CODE_TO_SUBCLASS.get(ec.value(), cls)
        return RuntimeError.__new__(use_cls, ec)  # type: ignore


class InvalidTorrentHandleError(LibtorrentError):
    pass


# As of libtorrent 1.2.6, error_category.__hash__ functions aren't consistent
# between instances, so we can't use them as dict keys. Use the names as keys
# instead.
_CATEGORY_NAME_TO_SUBCLASS = {
    GENERIC_CATEGORY.name(): OSError,
    SYSTEM_CATEGORY.name(): OSError,
    LIBTORRENT_CATEGORY.name(): LibtorrentError,
}

_LTEV = LibtorrentErrorValue
_LIBTORRENT_CODE_TO_SUBCLASS = {
    _LTEV.INVALID_TORRENT_HANDLE.value: InvalidTorrentHandleError,
}

_ERRNO_TO_OSERROR = {
    errno.ETIMEDOUT: TimeoutError,
    errno.ECANCELED: CanceledError,
}


def exception_from_error_code(ec: lt.error_code) -> Optional[Exception]:
    # libtorrent represents non-errors as a non-None error_code object with a
    # value of 0
    if not ec.value():
        return None

    return Error(ec)


def exception_from_alert(alert: lt.alert) -> Optional[Exception]:
    ec = getattr(alert, "error", None)
    if not ec:
        return None
    return exception_from_error_code(ec)


# Only the codes we dispatch on. A full table would need to enumerate every
# category's message strings at import time.
_MESSAGE_TO_ERROR_CODE: Dict[str, lt.error_code] = {}


def _init_message_lookup() -> None:
    for value in _LIBTORRENT_CODE_TO_SUBCLASS:
        ec = lt.error_code(value, LIBTORRENT_CATEGORY)
        _MESSAGE_TO_ERROR_CODE.setdefault(ec.message(), ec)
    for value in _ERRNO_TO_OSERROR:
        ec = lt.error_code(value, GENERIC_CATEGORY)
        _MESSAGE_TO_ERROR_CODE.setdefault(ec.message(), ec)


_init_message_lookup()


def error_code_from_exception(exc: Exception) -> Optional[lt.error_code]:
    if not isinstance(exc, RuntimeError):
        return None
    return _MESSAGE_TO_ERROR_CODE.get(str(exc))


def _translate_exception(exc: Exception) -> Optional[Exception]:
    if isinstance(exc, Error):
        return None
    ec = error_code_from_exception(exc)
    if not ec:
        return None
    return exception_from_error_code(ec)


@contextlib.contextmanager
def translate_exceptions() -> Generator:
    try:
        yield
    except RuntimeError as exc:
        translated = _translate_exception(exc)
        if translated:
            raise translated from exc
        raise


def best_info_hash(info_hashes) -> lt.sha1_hash:
    """Picks the info hash we key torrents by: v1 when there is one."""
    if info_hashes.has_v1():
        return info_hashes.v1
    return info_hashes.get_best()


def get_handle_info_hash(handle: lt.torrent_handle) -> str:
    with translate_exceptions():
        if hasattr(handle, "info_hashes"):
            return str(best_info_hash(handle.info_hashes()))
        return str(handle.info_hash())


def get_alert_info_hash(alert: lt.torrent_alert) -> Optional[str]:
    """Returns the info hash of the torrent an alert is about.

    Works for torrent_removed_alert too, whose handle is no longer valid.
    Returns None if the torrent can't be identified anymore.
    """
    info_hashes = getattr(alert, "info_hashes", None)
    if info_hashes is not None:
        return str(best_info_hash(info_hashes))
    info_hash = getattr(alert, "info_hash", None)
    if isinstance(info_hash, lt.sha1_hash):
        return str(info_hash)
    try:
        return get_handle_info_hash(alert.handle)
    except RuntimeError:
        return None
