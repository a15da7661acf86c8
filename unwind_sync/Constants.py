# Constants.py
# Description: Constants shared by the local store, the API client and the sync services
#
# Imports
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Identity ---
APP_NAME = "unwind_sync"
DEFAULT_CLIENT_ID = "unwind_sync_local_instance_v1"

# --- Entity kinds ---
KIND_JOURNAL = "journal"
KIND_MISTAKES = "mistakes"
KIND_OVERTHINKING = "overthinking"
KIND_TODOS = "todos"

# --- Backend ---
DEFAULT_API_BASE_URL = "http://127.0.0.1:5000"
API_PROFILE_PATH = "/api/auth/profile"
DEFAULT_LIST_PAGE = 1
DEFAULT_LIST_LIMIT = 50
# Pull-on-mount fetches one page this large
DEFAULT_PULL_PAGE_SIZE = 200

# --- Local store ---
DEFAULT_LATEST_LIMIT = 10
DEFAULT_TODO_PRIORITY = "medium"

# --- Network monitor ---
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_PROBE_PORT = 443
DEFAULT_PROBE_TIMEOUT_SECONDS = 3.0

#
# End of Constants.py
########################################################################################################################
