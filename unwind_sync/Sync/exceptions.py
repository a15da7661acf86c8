# unwind_sync/Sync/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class SyncError(Exception):
    """Base exception for sync signals raised on user-initiated paths."""
    pass

class NoNetworkError(SyncError):
    """Raised when a manual sync is requested while the device is offline."""
    def __init__(self, message: str = "No network connection. Please try again when online."):
        super().__init__(message)

class AuthenticationRequiredError(SyncError):
    """Raised when a manual sync is requested without a signed-in user."""
    def __init__(self, message: str = "Authentication required. Please sign in to sync."):
        super().__init__(message)

#
# End of unwind_sync/Sync/exceptions.py
########################################################################################################################
