"""Config path helpers."""

from pathlib import Path

from platformdirs import user_config_dir

from dlb_auth.constants import APP_NAME, CONFIG_FILENAME


def get_config_dir() -> Path:
    """OS-appropriate config directory (e.g. ~/.config/dlb-auth on Linux)."""
    return Path(user_config_dir(APP_NAME))


def get_config_path() -> Path:
    """Default location of dlb_auth_config.json."""
    return get_config_dir() / CONFIG_FILENAME
