"""File path resolution using platformdirs.

Persistent QueryDesk state (credential file, config) lives in the
platform user data directory:
  macOS: ~/Library/Application Support/querydesk/
  Linux: ~/.local/share/querydesk/
  Windows: %LOCALAPPDATA%/querydesk/
"""

from pathlib import Path

import platformdirs

APP_NAME = "querydesk"


def get_data_dir() -> Path:
    """Return the directory for persistent data."""
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_default_credentials_path() -> Path:
    """Return the default credential store file path."""
    return get_data_dir() / "credentials.json"
