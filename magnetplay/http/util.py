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

"""Class-based flask blueprints.

Methods decorated with route() or errorhandler() are bound to the instance
and registered on its flask.Blueprint when the instance is constructed, so
views can reach per-instance state through self.
"""

from typing import Any
from typing import Callable
from typing import Type
from typing import Union

import flask

_AppLike = Union[flask.Flask, flask.Blueprint]

_Decorator = Callable[[Callable], Callable]


def _defer(func: Callable, register: Callable[[_AppLike, Callable], None]):
    registrations = getattr(func, "_registrations", [])
    registrations.append(register)
    func._registrations = registrations  # type: ignore
    return func


def route(rule: str, **options: Any) -> _Decorator:
    def decorator(func: Callable) -> Callable:
        endpoint: str = options.pop("endpoint", func.__name__)

        def register(applike: _AppLike, bound: Callable) -> None:
            applike.add_url_rule(rule, endpoint, bound, **options)

        return _defer(func, register)

    return decorator


def errorhandler(exc_class: Type[Exception]) -> _Decorator:
    def decorator(func: Callable) -> Callable:
        # On a blueprint, this only covers the blueprint's own views
        def register(applike: _AppLike, bound: Callable) -> None:
            applike.register_error_handler(exc_class, bound)

        return _defer(func, register)

    return decorator


class Blueprint:
    def __init__(self, name: str, import_name: str, **kwargs: Any) -> None:
        self.blueprint = flask.Blueprint(name, import_name, **kwargs)

        for attr_name in dir(type(self)):
            func = getattr(type(self), attr_name)
            for register in getattr(func, "_registrations", ()):
                register(self.blueprint, getattr(self, attr_name))
