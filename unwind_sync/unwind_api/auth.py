# unwind_sync/unwind_api/auth.py
# Description: Sources of the bearer credential attached to API requests.
#
# Imports
import os
from typing import Optional, Protocol, runtime_checkable
#
#######################################################################################################################
#
# Functions:

@runtime_checkable
class TokenProvider(Protocol):
    """
    Anything that can hand out the current ID token.

    The identity provider itself is external; a provider returns None when
    no user is signed in, which callers treat as "cannot sync right now".
    """
    async def get_token(self) -> Optional[str]:
        ...


class StaticTokenProvider:
    def __init__(self, token: Optional[str]):
        self._token = token or None

    async def get_token(self) -> Optional[str]:
        return self._token


class EnvTokenProvider:
    """Reads the token from an environment variable on every call, so a refreshed token is picked up."""
    def __init__(self, var_name: str):
        self.var_name = var_name

    async def get_token(self) -> Optional[str]:
        value = os.environ.get(self.var_name, "").strip()
        return value or None

#
# End of unwind_sync/unwind_api/auth.py
########################################################################################################################
