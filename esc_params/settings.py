"""
Runtime settings, read from the environment after loading an optional .env.

    ESC_PARAMS_IMAGE       flash image file used by the CLI
    ESC_PARAMS_REGION      parameter page offset in the image (e.g. 0x0)
    ESC_PARAMS_ERASE_SIZE  bytes erased before each write
    ESC_PARAMS_LOG_LEVEL   DEBUG, INFO, WARNING or ERROR
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .storage.flash import FLASH_PAGE_SIZE

log = logging.getLogger(__name__)

DEFAULT_IMAGE = "esc_params.bin"


@dataclass(frozen=True)
class Settings:
    image_path: Path = Path(DEFAULT_IMAGE)
    region: int = 0
    erase_size: int = FLASH_PAGE_SIZE
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ValueError(f"{name}={raw!r} is not an integer") from None


def load_settings(env_path: str | Path | None = None) -> Settings:
    """
    Build Settings from the environment. A .env file (given, or found in the
    working directory) is loaded first without overriding real variables.
    """
    env_file = Path(env_path) if env_path else Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=False)
        log.info(".env loaded from %s", env_file)

    return Settings(
        image_path=Path(os.environ.get("ESC_PARAMS_IMAGE", DEFAULT_IMAGE)),
        region=_int_env("ESC_PARAMS_REGION", 0),
        erase_size=_int_env("ESC_PARAMS_ERASE_SIZE", FLASH_PAGE_SIZE),
        log_level=os.environ.get("ESC_PARAMS_LOG_LEVEL", "INFO").upper(),
    )
