from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from dotenv import find_dotenv, load_dotenv
from loguru import logger


PathLike = Union[str, Path]

ENV_FILE_VARIABLE = "CRAWLER_ENV_FILE"


def resolve_env_file(dotenv_path: PathLike | None = None) -> Optional[Path]:
    """Pick the .env file a crawl run should read, or None when there is none.

    Order: the explicit ``dotenv_path``, then ``$CRAWLER_ENV_FILE``, then the
    nearest .env walking up from the working directory.
    """
    candidate = dotenv_path or os.getenv(ENV_FILE_VARIABLE) or find_dotenv(usecwd=True)
    if not candidate:
        return None

    path = Path(candidate)
    return path if path.is_file() else None


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Export the crawler's .env settings into ``os.environ``.

    Returns True when a file was found and at least one variable was read.
    """
    path = resolve_env_file(dotenv_path)
    if path is None:
        return False

    loaded = load_dotenv(dotenv_path=path, override=override)
    if loaded:
        logger.debug(f"Loaded crawler environment from {path}")
    return loaded
