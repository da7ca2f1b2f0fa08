"""
Interpretation of decoded API response bodies.

Handles both ``formatversion=1`` and ``formatversion=2`` shapes as well as
the legacy (``errorformat=bc``) and modern warning/error envelopes.
"""

from __future__ import annotations

import re
import typing as t

from wikibatch.exceptions import ApiWarnings

TRUNCATED_RESULT_CODE = "truncatedresult"
TRUNCATED_RESULT = re.compile(
    r"^This result was truncated because it would otherwise  ?be larger than the limit of .* bytes\.?$"
)

WarnHandler = t.Callable[[Exception], t.Any]


def response_boolean(value: t.Any) -> bool:
    """
    Get a boolean from an API response value.

    Parameters
    ----------
    value : typing.Any
        A response value such as ``body.get("batchcomplete")``. With
        ``formatversion=1`` an absent value means false and an empty
        string means true; with ``formatversion=2`` booleans are used.

    Returns
    -------
    bool
        Whether the flag is set.
    """
    return value == "" or value is True


def is_batch_complete(body: t.Any) -> bool:
    if not isinstance(body, dict):
        return False
    return response_boolean(body.get("batchcomplete"))


def response_errors(body: t.Any) -> list[dict[str, t.Any]]:
    """
    Return the errors of a response body.

    Parameters
    ----------
    body : typing.Any
        Decoded response body.

    Returns
    -------
    list[dict[str, typing.Any]]
        The single ``error`` object, the ``errors`` list, or an empty list.
    """
    if not isinstance(body, dict):
        return []
    if "error" in body:
        return [body["error"]]
    if "errors" in body:
        return list(body["errors"])
    return []


def response_warnings(body: t.Any) -> list[dict[str, t.Any]]:
    """
    Return the warnings of a response body as an ordered list.

    Parameters
    ----------
    body : typing.Any
        Decoded response body.

    Returns
    -------
    list[dict[str, typing.Any]]
        Warning objects. Legacy per-module warnings get a ``module`` key,
        with the ``main`` module's warning moved to the end.
    """
    if not isinstance(body, dict):
        return []
    warnings = body.get("warnings")
    if not warnings:
        return []
    if isinstance(warnings, list):
        return warnings

    modules = list(warnings.items())
    if modules[0][0] == "main":
        modules.append(modules.pop(0))
    return [{**warning, "module": module} for module, warning in modules]


def response_continuation(body: t.Any) -> dict[str, t.Any] | None:
    """Copy of the ``continue`` parameters of a response, or ``None`` at the end."""
    if not isinstance(body, dict) or "continue" not in body:
        return None
    return dict(body["continue"])


def is_truncated_result_warning(warning: t.Mapping[str, t.Any]) -> bool:
    code = warning.get("code")
    if code:
        return code == TRUNCATED_RESULT_CODE
    text = warning.get("warnings") or warning.get("*") or ""
    return TRUNCATED_RESULT.match(text) is not None


def drop_truncated_result_warnings(
    warnings: list[dict[str, t.Any]],
) -> list[dict[str, t.Any]]:
    return [warning for warning in warnings if not is_truncated_result_warning(warning)]


def make_warn_dropping_truncated_result_warning(warn: WarnHandler) -> WarnHandler:
    """
    Decorate a warn handler so that truncated result warnings are dropped.

    Parameters
    ----------
    warn : WarnHandler
        Original handler.

    Returns
    -------
    WarnHandler
        Handler that forwards everything except truncated result warnings;
        if an ``ApiWarnings`` contains nothing else, the wrapped handler is
        not called at all.
    """

    def dropping_warn(error: Exception) -> t.Any:
        if not isinstance(error, ApiWarnings):
            return warn(error)
        warnings = drop_truncated_result_warnings(error.warnings)
        if not warnings:
            return None
        if len(warnings) == len(error.warnings):
            return warn(error)
        return warn(ApiWarnings(warnings))

    return dropping_warn
