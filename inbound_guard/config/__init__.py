"""Inbound guard configuration package

- INI file loading with environment variable overrides
- Built-in defaults
- Pydantic schema validation
"""

from .config import GuardConfig
from .schema import EnforcementConfigSchema, GuardConfigSchema

__all__ = [
    "GuardConfig",
    "GuardConfigSchema",
    "EnforcementConfigSchema",
]
