"""
Request options and their layered defaults.

Effective options are merged from ordered layers: the built-in
``DEFAULT_OPTIONS``, any extra default layers passed to a session by
extension packages, the session's default options, and finally the
options of the individual request. Later layers win.
"""

from __future__ import annotations

import typing as t
from types import MappingProxyType

from wikibatch.logging import log_api_warning
from wikibatch.retry import DEFAULT_ERROR_HANDLERS

Options = t.Mapping[str, t.Any]

DEFAULT_OPTIONS: Options = MappingProxyType(
    {
        "method": "GET",
        "token_type": None,
        "token_name": "token",
        "user_agent": None,
        "max_retries_seconds": 65,
        "retry_after_maxlag_seconds": 5,
        "retry_after_readonly_seconds": 30,
        "warn": log_api_warning,
        "drop_truncated_result_warning": False,
        "access_token": None,
        "authorization": None,
        "error_handlers": DEFAULT_ERROR_HANDLERS,
    }
)

METHODS = ("GET", "POST")


def merge_options(*layers: Options | None) -> dict[str, t.Any]:
    """
    Merge option layers, later layers overriding earlier ones.

    Parameters
    ----------
    *layers : Options | None
        Option mappings in increasing order of precedence; ``None`` layers
        are skipped.

    Returns
    -------
    dict[str, typing.Any]
        Merged options.
    """
    merged: dict[str, t.Any] = {}
    for layer in layers:
        if layer:
            merged.update(layer)
    return merged


def merge_error_handlers(*layers: Options | None) -> dict[str, t.Any]:
    """
    Merge the ``error_handlers`` option of each layer key by key.

    Unlike other options, a layer's ``error_handlers`` mapping extends the
    handlers of the layers below it instead of replacing them.
    """
    handlers: dict[str, t.Any] = {}
    for layer in layers:
        if layer and layer.get("error_handlers"):
            handlers.update(layer["error_handlers"])
    return handlers
