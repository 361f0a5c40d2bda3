from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from ..core.config import CatalogConfig, ConfigSet, ServerConfig, load_config_set

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


class ConfigService:
    def __init__(self, config_dir: Path) -> None:
        self._config_dir = config_dir
        self._config: Optional[ConfigSet] = None

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def load(self) -> ConfigSet:
        self._config = load_config_set(self._config_dir)
        return self._config

    def get(self) -> ConfigSet:
        if self._config is None:
            self.load()
        assert self._config is not None
        return self._config

    def get_server_config(self) -> ServerConfig:
        return self.get().server

    def get_catalog_config(self) -> CatalogConfig:
        return self.get().catalog


def create_config_service() -> ConfigService:
    override = os.getenv("MCP_CONFIG_DIR")
    config_dir = Path(override) if override else DEFAULT_CONFIG_DIR
    return ConfigService(config_dir=config_dir)
