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

import dataclasses
from typing import Optional

import libtorrent as lt

from magnetplay import ltpy
from magnetplay import types


class Error(Exception):

    pass


class InvalidMagnetLink(Error):

    pass


@dataclasses.dataclass(frozen=True)
class Magnet:

    uri: str
    info_hash: types.InfoHash
    name: str


def _get_info_hash(atp: lt.add_torrent_params) -> Optional[lt.sha1_hash]:
    info_hashes = getattr(atp, "info_hashes", None)
    if info_hashes is not None:
        # libtorrent 2.x
        best = ltpy.best_info_hash(info_hashes)
    else:
        best = atp.info_hash
    if best.is_all_zeros():
        return None
    return best


def parse(uri: Optional[str]) -> Magnet:
    """Decodes a magnet link.

    Raises:
        InvalidMagnetLink: If the link is missing, malformed, or carries no
            info hash.
    """
    if not uri:
        raise InvalidMagnetLink("missing magnet link")
    try:
        with ltpy.translate_exceptions():
            atp = lt.parse_magnet_uri(uri)
    except RuntimeError as exc:
        raise InvalidMagnetLink(f"{uri!r}: {exc}") from exc
    sha1_hash = _get_info_hash(atp)
    if sha1_hash is None:
        raise InvalidMagnetLink(f"{uri!r}: no info hash")
    info_hash = types.InfoHash(str(sha1_hash))
    return Magnet(uri=uri, info_hash=info_hash, name=atp.name or info_hash)
