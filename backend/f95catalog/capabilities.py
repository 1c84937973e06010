"""Capability results reported by external collaborators at construction."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConfigState(str, Enum):
    """Configuration state of an external collaborator."""

    CONFIGURED = "configured"
    NOT_CONFIGURED = "not_configured"
    ERROR = "error"


@dataclass(frozen=True)
class Capability:
    """Result of a collaborator's capability check."""

    state: ConfigState
    detail: str = ""

    @property
    def available(self) -> bool:
        return self.state is ConfigState.CONFIGURED

    @classmethod
    def configured(cls, detail: str = "") -> "Capability":
        return cls(ConfigState.CONFIGURED, detail)

    @classmethod
    def not_configured(cls, detail: str) -> "Capability":
        return cls(ConfigState.NOT_CONFIGURED, detail)

    @classmethod
    def error(cls, detail: str) -> "Capability":
        return cls(ConfigState.ERROR, detail)
