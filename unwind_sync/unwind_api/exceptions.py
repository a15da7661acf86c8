# unwind_sync/unwind_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

from typing import Optional


class UnwindAPIError(Exception):
    """Base exception for unwind_api errors. `message` is always human-readable."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class APIConnectionError(UnwindAPIError):
    """Raised for network or connection issues."""
    pass

class APIRequestError(UnwindAPIError):
    """Raised for errors in constructing the request (e.g., unserializable body)."""
    pass

class APIResponseError(UnwindAPIError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}

    def __str__(self):
        return f"API Error {self.status_code}: {self.message}"

class AuthenticationError(APIResponseError):
    """Raised for 401/403 responses."""
    pass

#
# End of unwind_sync/unwind_api/exceptions.py
########################################################################################################################
