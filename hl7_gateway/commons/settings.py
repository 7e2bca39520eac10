import os
import sys
from typing import Any, Optional

import yaml

from hl7_gateway.commons.types import Settings

DEFAULT_CONFIG = "hl7_gateway/configs/settings.yaml"


def resource_path(relative_path: str) -> str:
    """Absolute path to a bundled resource, both frozen (PyInstaller) and in development."""
    if hasattr(sys, "_MEIPASS"):
        base_path = sys._MEIPASS
    else:
        base_path = os.path.abspath(".")
    return os.path.join(base_path, relative_path)


def load_settings(config_path_or_obj: Any = None) -> Settings:
    """Build Settings from a YAML path, an already loaded dict, or defaults.

    With no argument the ``HL7_GATEWAY_CONFIG`` environment variable is
    honoured before falling back to the bundled settings file.
    """
    if config_path_or_obj is None:
        config_path_or_obj = os.getenv("HL7_GATEWAY_CONFIG") or _default_config_path()

    if isinstance(config_path_or_obj, Settings):
        return config_path_or_obj
    if isinstance(config_path_or_obj, dict):
        return Settings.model_validate(config_path_or_obj)
    if config_path_or_obj == "":
        return Settings()
    if isinstance(config_path_or_obj, (str, os.PathLike)):
        with open(config_path_or_obj, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return Settings.model_validate(raw)
    raise TypeError(
        f"Invalid config source: expected path, dict or Settings, got {type(config_path_or_obj).__name__}"
    )


def _default_config_path() -> Optional[str]:
    candidate = resource_path(DEFAULT_CONFIG)
    if os.path.exists(candidate):
        return candidate
    # Installed package: settings.yaml lives beside this module's package
    packaged = os.path.join(os.path.dirname(os.path.dirname(__file__)), "configs", "settings.yaml")
    return packaged if os.path.exists(packaged) else ""
