from .exceptions import ApiErrors as ApiErrors
from .exceptions import ApiWarnings as ApiWarnings
from .exceptions import DefaultUserAgentWarning as DefaultUserAgentWarning
from .exceptions import HttpStatusError as HttpStatusError
from .options import DEFAULT_OPTIONS as DEFAULT_OPTIONS
from .response import make_warn_dropping_truncated_result_warning as make_warn_dropping_truncated_result_warning
from .response import response_boolean as response_boolean
from .session import HttpxSession as HttpxSession
from .session import Session as Session
from .transport import InternalResponse as InternalResponse
from .transport import Transport as Transport

__all__ = [
    "ApiErrors",
    "ApiWarnings",
    "DefaultUserAgentWarning",
    "HttpStatusError",
    "DEFAULT_OPTIONS",
    "HttpxSession",
    "InternalResponse",
    "Session",
    "Transport",
    "make_warn_dropping_truncated_result_warning",
    "response_boolean",
]
