"""
Conversion of typed request parameters into their wire representation.
"""

from __future__ import annotations

import typing as t

ListableParam = str | int | float
SingleParam = ListableParam | bool | bytes | t.IO[bytes] | None
ListParam = list[ListableParam] | tuple[ListableParam, ...] | set[ListableParam] | frozenset[ListableParam]
Param = SingleParam | ListParam
Params = t.Mapping[str, Param]
WireValue = str | bytes | t.IO[bytes]

# Parameters that stay in the URL query string of a POST request.
URL_PARAM_NAMES = frozenset({"action", "origin", "crossorigin"})

LIST_SEPARATOR = "|"
ALTERNATIVE_LIST_SEPARATOR = "\x1f"


class _Omit:
    """Marker for a parameter that is not sent at all."""

    _instance: _Omit | None = None

    def __new__(cls) -> _Omit:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "OMIT"

    def __bool__(self) -> bool:
        return False


OMIT = _Omit()


def is_set_param(value: t.Any) -> bool:
    return isinstance(value, (set, frozenset))


def is_list_param(value: t.Any) -> bool:
    return isinstance(value, (list, tuple))


def is_binary_param(value: t.Any) -> bool:
    """
    Check whether a value is a file upload rather than a text parameter.

    Parameters
    ----------
    value : typing.Any
        Parameter value.

    Returns
    -------
    bool
        ``True`` for ``bytes``/``bytearray`` and readable file objects.
    """
    return isinstance(value, (bytes, bytearray)) or callable(getattr(value, "read", None))


def encode_single(value: t.Any) -> WireValue | _Omit:
    """
    Encode a single (non-list) parameter value.

    Parameters
    ----------
    value : typing.Any
        Scalar parameter value.

    Returns
    -------
    str | bytes | typing.IO[bytes] | _Omit
        Wire value, or ``OMIT`` for ``False`` and ``None``.
    """
    # bool is checked before numbers since it is an int subclass
    if value is True:
        return ""
    if value is False or value is None:
        return OMIT
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _encode_list_element(element: t.Any) -> str:
    encoded = encode_single(element)
    if not isinstance(encoded, str):
        raise TypeError(f"Cannot use {element!r} as a list parameter element")
    return encoded


def encode_list(value: t.Iterable[t.Any]) -> str:
    """
    Encode a list or set parameter value.

    Set elements are sorted by their encoded form, so that equal sets
    always produce the same wire value.

    Parameters
    ----------
    value : typing.Iterable[typing.Any]
        List, tuple, set or frozenset of strings and numbers.

    Returns
    -------
    str
        Elements joined with ``|``, or with ``\\x1f`` (and a leading
        ``\\x1f``) if any element contains a ``|``.
    """
    elements = [_encode_list_element(element) for element in value]
    if is_set_param(value):
        elements.sort()
    if any(LIST_SEPARATOR in element for element in elements):
        return ALTERNATIVE_LIST_SEPARATOR + ALTERNATIVE_LIST_SEPARATOR.join(elements)
    return LIST_SEPARATOR.join(elements)


def encode_value(value: Param) -> WireValue | _Omit:
    """
    Encode any parameter value.

    Parameters
    ----------
    value : Param
        Parameter value.

    Returns
    -------
    str | bytes | typing.IO[bytes] | _Omit
        Wire value, or ``OMIT`` if the parameter should not be sent.
    """
    if is_list_param(value) or is_set_param(value):
        return encode_list(t.cast(t.Iterable[t.Any], value))
    return encode_single(value)


def encode_params(params: Params) -> dict[str, WireValue]:
    """
    Encode a whole parameter mapping, dropping omitted parameters.

    Parameters
    ----------
    params : Params
        Request parameters.

    Returns
    -------
    dict[str, WireValue]
        Parameters ready to be sent.
    """
    encoded: dict[str, WireValue] = {}
    for key, value in params.items():
        encoded_value = encode_value(value)
        if encoded_value is not OMIT:
            encoded[key] = t.cast(WireValue, encoded_value)
    return encoded


def normalize_scalar(value: Param) -> t.Any:
    """Encode single values so that e.g. ``2`` and ``"2"`` compare equal; lists and sets pass through."""
    if is_list_param(value) or is_set_param(value):
        return value
    return encode_single(value)


def split_post_params(params: t.Mapping[str, WireValue]) -> tuple[dict[str, WireValue], dict[str, WireValue]]:
    url_params: dict[str, WireValue] = {}
    body_params: dict[str, WireValue] = {}
    for key, value in params.items():
        if key in URL_PARAM_NAMES:
            url_params[key] = value
        else:
            body_params[key] = value
    return url_params, body_params


def has_binary_value(params: t.Mapping[str, t.Any]) -> bool:
    return any(is_binary_param(value) for value in params.values())
