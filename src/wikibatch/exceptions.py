"""
Errors and warnings raised or reported by wikibatch sessions.
"""

from __future__ import annotations

import typing as t


class ApiErrors(Exception):
    """
    One or more errors returned by the API.

    Parameters
    ----------
    errors : list[dict[str, typing.Any]]
        Error objects from the response, in server order. Must be
        nonempty, and each error must contain at least a ``code``.

    Notes
    -----
    The exception message is the code of the first error.
    """

    def __init__(self, errors: list[dict[str, t.Any]]) -> None:
        if not errors:
            raise ValueError("ApiErrors requires at least one error")
        super().__init__(errors[0].get("code"))
        self.errors = errors

    @property
    def code(self) -> str | None:
        return self.errors[0].get("code")


class ApiWarnings(Exception):
    """
    One or more warnings returned by the API.

    Never raised by the library; instances are passed to the ``warn``
    option handler instead.

    Parameters
    ----------
    warnings : list[dict[str, typing.Any]]
        Warning objects from the response. Must be nonempty.
    """

    def __init__(self, warnings: list[dict[str, t.Any]]) -> None:
        if not warnings:
            raise ValueError("ApiWarnings requires at least one warning")
        first = warnings[0]
        super().__init__(first.get("code") or first.get("warnings") or first.get("*"))
        self.warnings = warnings


class DefaultUserAgentWarning(UserWarning):
    """Reported once per session when a request is sent without a custom user agent."""

    def __init__(self) -> None:
        super().__init__(
            "wikibatch: Sending request with default User-Agent. "
            "You should set the user_agent request option, "
            "either as a default option for the session "
            "or as a custom option for each request. "
            "See w.wiki/9mMA for the User-Agent policy."
        )


class HttpStatusError(RuntimeError):
    """
    The API returned a non-200 HTTP status that could not be retried.

    Parameters
    ----------
    status : int
        HTTP status code of the response.
    """

    def __init__(self, status: int) -> None:
        super().__init__(f"API request returned non-200 HTTP status code: {status}")
        self.status = status
