"""
Constants for the chat relay service.
Centralizes magic strings and configuration values.
"""

import os
import sys


def get_app_data_directory():
    """Get the application data directory, creating it if it doesn't exist."""
    override = os.getenv("CHATRELAY_DATA_DIR")
    if override:
        app_data_dir = override
    elif getattr(sys, "frozen", False):
        # Running as a packaged app
        if sys.platform == "darwin":  # macOS
            app_data_dir = os.path.expanduser("~/Library/Application Support/ChatRelay")
        elif sys.platform == "win32":  # Windows
            app_data_dir = os.path.join(os.getenv("APPDATA", ""), "ChatRelay")
        else:  # Linux
            app_data_dir = os.path.expanduser("~/.local/share/ChatRelay")
    else:
        # Running in development
        script_dir = os.path.dirname(os.path.abspath(__file__))
        app_data_dir = os.path.dirname(os.path.dirname(script_dir))  # Go up two levels from src/chatrelay/

    os.makedirs(app_data_dir, exist_ok=True)
    return app_data_dir


def get_database_path():
    """Get the SQLite database path."""
    return os.path.join(get_app_data_directory(), "app_data.db")


# Network
REQUEST_TIMEOUT_S = 60.0
STREAM_IDLE_TIMEOUT_S = 60.0
MAX_PENDING_FRAME_CHARS = 16 * 1024

# Endpoints
CHAT_COMPLETIONS_PATH = "v1/chat/completions"
IMAGE_GENERATIONS_PATH = "v1/images/generations"

# Auth
ACCESS_CODE_PREFIX = "ak-"

# Persistence
CHAT_STORE_KEY = "chat-next-web-store"
STORE_VERSION = 2

# Memory
SUMMARIZE_MIN_LEN = 50
SUMMARIZE_MODEL = "gpt-3.5-turbo"

# Session store
UNDO_DELETE_WINDOW_S = 5.0
DEFAULT_IMAGE_USER = "default_user"
