"""Pydantic schema for inbound guard configuration validation."""

from __future__ import annotations

import ipaddress

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DatabaseConfigSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    path: str = Field(..., min_length=1, description="Panel SQLite database")
    busy_timeout_ms: int = Field(default=5000, ge=0)


class ProxyConfigSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    config_path: str = Field(..., min_length=1, description="Proxy core config.json")


class EnforcementConfigSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interval_seconds: int = Field(default=30, ge=1)
    grace_cycles: int = Field(default=5, ge=0)
    ticks_per_cycle: int = Field(default=2, ge=1)
    shutdown_timeout_seconds: float = Field(default=10.0, ge=0)
    excluded_ips: list[str] = Field(default_factory=list)

    @field_validator("excluded_ips", mode="before")
    @classmethod
    def _split_excluded(cls, v: object) -> object:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("excluded_ips")
    @classmethod
    def _validate_excluded(cls, v: list[str]) -> list[str]:
        for item in v:
            ipaddress.ip_address(item)
        return v

    @property
    def penalty_threshold(self) -> int:
        """Grace length in ticks: ``grace_cycles * ticks_per_cycle``."""
        return self.grace_cycles * self.ticks_per_cycle


class LoggingConfigSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    level: str = Field(default="INFO")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


class GuardConfigSchema(BaseModel):
    database: DatabaseConfigSchema
    proxy: ProxyConfigSchema
    enforcement: EnforcementConfigSchema
    logging: LoggingConfigSchema
