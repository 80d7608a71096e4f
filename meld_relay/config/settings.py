"""
config/settings.py — Central configuration via env vars + YAML override.

Priority: ENV > config.yaml > defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MeldSettings(BaseSettings):
    host: str = Field("127.0.0.1", description="Meld Studio WebChannel host")
    port: int = Field(13376, ge=1, le=65535, description="Meld Studio WebChannel port")
    reconnect_interval: float = Field(3.0, gt=0, description="Seconds between reconnect attempts")
    tick_interval: float = Field(1.0, gt=0, description="Seconds between timecode updates")
    open_timeout: float = Field(5.0, ge=0, description="Seconds allowed for socket open and handshake (0=no limit)")
    object_name: str = Field("meld", description="Name of the published WebChannel object")

    model_config = SettingsConfigDict(env_prefix="MELD_")


class APISettings(BaseSettings):
    host: str = Field("0.0.0.0", description="API server bind host")
    port: int = Field(8080, description="API server port")
    cors_origins: list[str] = Field(["*"], description="CORS allowed origins")
    log_level: str = Field("info", description="Log level")

    model_config = SettingsConfigDict(env_prefix="API_")


class OSCSettings(BaseSettings):
    enabled: bool = Field(True, description="Enable OSC listener")
    listen_host: str = Field("0.0.0.0", description="OSC UDP listen host")
    listen_port: int = Field(9000, description="OSC UDP listen port")
    reply_port: int = Field(9001, description="OSC UDP reply/feedback port")
    client_host: str = Field("255.255.255.255", description="OSC broadcast/client host")

    model_config = SettingsConfigDict(env_prefix="OSC_")


class SurfaceSettings(BaseSettings):
    label: str = Field("meldstudio", description="Variable namespace used in preset button text")

    model_config = SettingsConfigDict(env_prefix="SURFACE_")


class Settings(BaseSettings):
    meld: MeldSettings = Field(default_factory=MeldSettings)
    api: APISettings = Field(default_factory=APISettings)
    osc: OSCSettings = Field(default_factory=OSCSettings)
    surface: SurfaceSettings = Field(default_factory=SurfaceSettings)
    config_file: Path = Field(Path("config.yaml"), description="Path to YAML config file")

    model_config = SettingsConfigDict(env_prefix="RELAY_")

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings, merging YAML file if present."""
        path = config_path or Path(os.environ.get("RELAY_CONFIG_FILE", "config.yaml"))
        yaml_data: dict = {}

        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

        # Build sub-settings from YAML + env. Init kwargs beat env in pydantic-settings,
        # so YAML keys that are also set in the environment are dropped first.
        meld = MeldSettings(**_yaml_section(yaml_data, "meld", "MELD_"))
        api = APISettings(**_yaml_section(yaml_data, "api", "API_"))
        osc = OSCSettings(**_yaml_section(yaml_data, "osc", "OSC_"))
        surface = SurfaceSettings(**_yaml_section(yaml_data, "surface", "SURFACE_"))

        return cls(meld=meld, api=api, osc=osc, surface=surface, config_file=path)

    def to_yaml(self, path: Path) -> None:
        """Save current settings to YAML."""
        data = {
            "meld": self.meld.model_dump(),
            "api": self.api.model_dump(),
            "osc": self.osc.model_dump(),
            "surface": self.surface.model_dump(),
        }
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _yaml_section(yaml_data: dict, section: str, env_prefix: str) -> dict:
    data = yaml_data.get(section) or {}
    return {k: v for k, v in data.items() if f"{env_prefix}{k}".upper() not in os.environ}


# Singleton accessor — call get_settings() anywhere in the app
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reload_settings(config_path: Optional[Path] = None) -> Settings:
    global _settings
    _settings = Settings.load(config_path)
    return _settings
