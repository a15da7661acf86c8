# unwind_sync/__init__.py
# Offline-first sync for the Unwind journaling data (journal, mistakes, overthinking, todos).
__version__ = "0.1.0"
