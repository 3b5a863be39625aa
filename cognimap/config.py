"""
Engine configuration.

Settings live in a JSON file (``--save-config`` writes one, ``--config``
reads it back); explicit CLI flags override file values.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "./data/sessions.db"


class EngineConfig(BaseModel):
    """Tunables for the engine and its generator calls."""

    db_path: str = DEFAULT_DB_PATH
    generator_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0.0)
    max_expansion_units: int = Field(default=2, ge=1)
    log_level: str = "INFO"


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """Read *path* (if it exists) and apply non-``None`` *overrides*."""
    data: Dict[str, Any] = {}
    if path:
        if os.path.isfile(path):
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            logger.info("Loaded config from %s", path)
        else:
            logger.warning("Config file %s not found; using defaults.", path)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return EngineConfig.model_validate(data)


def save_config(config: EngineConfig, path: str) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config.model_dump(), fh, indent=2)
    logger.info("Config saved → %s", path)
