from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from homecontrol import ARGS_DIR
from homecontrol.logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# PushConfig (args/push.yaml)
# =============================================================================

class WorkerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    interval_minutes: float = Field(default=5, gt=0)
    batch_size: int = Field(default=200, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    base_delay_minutes: float = Field(default=5, gt=0)
    max_delay_minutes: float = Field(default=360, gt=0)
    token_lookup_limit: int = Field(default=5, ge=1)


class ExpoConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    push_url: str = Field(default="https://exp.host/--/api/v2/push/send")
    chunk_size: int = Field(default=100, ge=1, le=100)
    timeout_seconds: float = Field(default=30, gt=0)
    access_token: Optional[str] = None


class RecurrenceConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_iterations: int = Field(default=50, ge=1)


class DefaultsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    timezone: str = Field(default="UTC")


class PushConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    expo: ExpoConfig = Field(default_factory=ExpoConfig)
    recurrence: RecurrenceConfig = Field(default_factory=RecurrenceConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)

    def expo_access_token(self) -> str | None:
        return os.environ.get("EXPO_ACCESS_TOKEN") or self.expo.access_token


# =============================================================================
# load_and_validate
# =============================================================================

_CONFIG_MAP: dict[str, type[BaseModel]] = {
    "push": PushConfig,
}


def load_and_validate(config_name: str, model_class: type[BaseModel] | None = None) -> BaseModel:
    if model_class is None:
        model_class = _CONFIG_MAP.get(config_name)
        if model_class is None:
            raise ValueError(f"Unknown config: {config_name}. Available: {list(_CONFIG_MAP.keys())}")

    yaml_path = ARGS_DIR / f"{config_name}.yaml"

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return model_class.model_validate(raw)
    except Exception as e:
        logger.warning("config_validation_failed", config=config_name, error=str(e))
        return model_class()


def load_push_config() -> PushConfig:
    return load_and_validate("push")
