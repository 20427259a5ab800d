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

import abc
import contextlib
import json
import pathlib
from typing import Any
from typing import Callable
from typing import ContextManager
from typing import Iterator
from typing import MutableMapping
from typing import Optional
from typing import Tuple
from typing import Type
from typing import TypeVar
from typing import Union

# Design notes:

# Config is stored as json, so the operator (or a script) can edit it by hand
# between runs.

# Config is a flat dict of json-compatible primitives. Each component that
# cares about some keys parses them in its own stage_config(), filling in
# defaults with setdefault(), so the full effective config can be written
# back to disk after a successful load.

# Updates are "staged": every component parses and validates the new config
# first, then all of them commit together. If any component rejects the
# config, none of them apply it. Streaming sessions that already exist keep
# the settings they were created with.

FILENAME = "config.json"


class Error(Exception):

    pass


class InvalidConfigError(Error):

    pass


_T = TypeVar("_T")

_Number = Union[int, float]


class Config(dict, MutableMapping[str, Any]):
    @classmethod
    def from_config_dir(cls: Type["_C"], config_dir: pathlib.Path) -> "_C":
        with config_dir.joinpath(FILENAME).open() as fp:
            try:
                data = json.load(fp)
            except json.JSONDecodeError as exc:
                raise InvalidConfigError(str(exc)) from exc
        if not isinstance(data, dict):
            raise InvalidConfigError("config must be a json object")
        return cls(data)

    def write_config_dir(self, config_dir: pathlib.Path):
        with config_dir.joinpath(FILENAME).open(mode="w") as fp:
            json.dump(self, fp, sort_keys=True, indent=4)

    def _get(
        self, key: str, type_: Union[Type[_T], Tuple[Type, ...]]
    ) -> Optional[_T]:
        value = self.get(key)
        # bool is a subclass of int, but a bool is never a valid number here
        if key in self and (
            not isinstance(value, type_)
            or (type_ is not bool and isinstance(value, bool))
        ):
            raise InvalidConfigError(f'"{key}": {value!r} is not a {type_}')
        return value

    def _require(
        self, key: str, type_: Union[Type[_T], Tuple[Type, ...]]
    ) -> _T:
        value = self._get(key, type_)
        if value is None:
            raise InvalidConfigError(f'"{key}": missing')
        return value

    def get_int(self, key: str) -> Optional[int]:
        return self._get(key, int)

    def get_float(self, key: str) -> Optional[float]:
        value: Optional[_Number] = self._get(key, (int, float))
        if value is None:
            return None
        return float(value)

    def get_str(self, key: str) -> Optional[str]:
        return self._get(key, str)

    def get_bool(self, key: str) -> Optional[bool]:
        return self._get(key, bool)

    def require_int(self, key: str) -> int:
        return self._require(key, int)

    def require_float(self, key: str) -> float:
        return float(self._require(key, (int, float)))

    def require_str(self, key: str) -> str:
        return self._require(key, str)

    def require_bool(self, key: str) -> bool:
        return self._require(key, bool)

    def require_non_negative(self, key: str) -> float:
        value = self.require_float(key)
        if value < 0:
            raise InvalidConfigError(f'"{key}": {value!r} is negative')
        return value


_C = TypeVar("_C", bound=Config)


class HasConfig(abc.ABC):
    @abc.abstractmethod
    @contextlib.contextmanager
    def stage_config(self, config: Config) -> Iterator[None]:
        yield

    def set_config(self, config: Config) -> None:
        with self.stage_config(config):
            pass


def set_config(config: Config, *stages: Callable[[Config], ContextManager]):
    with contextlib.ExitStack() as stack:
        for stage in stages:
            stack.enter_context(stage(config))
