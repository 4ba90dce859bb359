from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "config.yaml"
CONFIG_ENV_VAR = "PDFPRO_CONFIG"


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not DEFAULT_CONFIG_PATH.exists():  # pragma: no cover - broken installation
        raise FileNotFoundError(f"Default config not found at {DEFAULT_CONFIG_PATH}")
    return OmegaConf.load(DEFAULT_CONFIG_PATH)


def _override_config_path() -> Optional[Path]:
    value = os.environ.get(CONFIG_ENV_VAR)
    if not value:
        return None
    path = Path(value)
    if not path.exists():
        raise FileNotFoundError(f"{CONFIG_ENV_VAR} points to a missing file: {path}")
    return path


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the resolved, read-only settings tree.

    Layers, lowest first: packaged ``config.yaml``, the YAML file named by
    ``PDFPRO_CONFIG`` and ``overrides``. Struct mode rejects keys that do not
    exist in the packaged defaults.
    """
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)

    layers = [base]
    override_path = _override_config_path()
    if override_path is not None:
        layers.append(OmegaConf.load(override_path))
    if overrides:
        layers.append(OmegaConf.create(overrides))

    merged = OmegaConf.merge(*layers)
    resolved = OmegaConf.create(OmegaConf.to_container(merged, resolve=True))
    OmegaConf.set_struct(resolved, True)
    OmegaConf.set_readonly(resolved, True)
    return resolved  # type: ignore[return-value]


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    return make_settings()


def max_upload_bytes(settings: DictConfig) -> int:
    return int(settings.limits.max_file_size_mb) * 1024 * 1024


def configure_logging(settings: DictConfig) -> None:
    level = str(settings.logging.level).upper()
    logging.basicConfig(level=level, format=settings.logging.format)
    logging.getLogger("pdfpro_backend").setLevel(level)
