# unwind_sync/unwind_api/__init__.py
from .client import UnwindAPIClient
from .auth import TokenProvider, StaticTokenProvider, EnvTokenProvider
from .exceptions import (
    UnwindAPIError, APIConnectionError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import ServerRecord, CreatedRecordResponse, UserProfile

__all__ = [
    "UnwindAPIClient",
    "TokenProvider", "StaticTokenProvider", "EnvTokenProvider",
    "UnwindAPIError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "ServerRecord", "CreatedRecordResponse", "UserProfile",
]
