"""Configuration management for the sail operator."""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Platform

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Operator settings."""

    model_config = SettingsConfigDict(
        env_prefix="SAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "sail-operator"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file; in-cluster config is used when unset",
    )
    operator_namespace: str = Field(
        default="sail-operator",
        description="Namespace the operator runs in; the base chart is installed here",
    )
    platform: Platform = Platform.KUBERNETES

    # Installation Settings
    resource_directory: str = Field(
        default="/var/lib/sail-operator/resources",
        description="Directory holding <version>/charts and <version>/profiles",
    )
    default_profile: str = ""
    config_file: Optional[str] = Field(
        default=None,
        description="Properties file with per-version image digests",
    )

    # Reconciliation Settings
    max_concurrent_reconciles: int = 1
    revision_requeue_seconds: int = Field(
        default=30,
        description="Delay before re-checking a revision whose readiness is pending",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class ReconcilerConfig:
    """Read-only configuration shared by every controller."""

    resource_directory: str
    platform: Platform = Platform.KUBERNETES
    default_profile: str = ""
    operator_namespace: str = "sail-operator"
    max_concurrent_reconciles: int = 1
    revision_requeue_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconcilerConfig":
        return cls(
            resource_directory=settings.resource_directory,
            platform=settings.platform,
            default_profile=settings.default_profile,
            operator_namespace=settings.operator_namespace,
            max_concurrent_reconciles=settings.max_concurrent_reconciles,
            revision_requeue_seconds=settings.revision_requeue_seconds,
        )


@dataclass(frozen=True)
class ImageDigests:
    """Images pinned for one Istio version."""

    istiod: str = ""
    proxy: str = ""
    cni: str = ""
    ztunnel: str = ""


@dataclass(frozen=True)
class OperatorConfig:
    """Immutable operator configuration read once at startup."""

    image_digests: dict[str, ImageDigests] = field(default_factory=dict)

    @classmethod
    def from_properties(cls, text: str) -> "OperatorConfig":
        """
        Parse a properties document.

        Keys have the form images.<version>.<component>, where underscores in
        the version stand for dots (images.v1_24_0.istiod=...). Other keys
        are ignored.

        Args:
            text: Properties file content

        Returns:
            OperatorConfig instance
        """
        images: dict[str, dict[str, str]] = {}
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line[0] in "#!":
                continue
            sep = _separator_index(line)
            if sep < 0:
                continue
            key = line[:sep].strip()
            value = line[sep + 1 :].strip().strip('"')

            parts = key.split(".")
            if len(parts) != 3 or parts[0] != "images":
                continue
            version = parts[1].replace("_", ".")
            images.setdefault(version, {})[parts[2]] = value

        digests = {}
        for version, components in images.items():
            digests[version] = ImageDigests(
                istiod=components.get("istiod", ""),
                proxy=components.get("proxy", ""),
                cni=components.get("cni", ""),
                ztunnel=components.get("ztunnel", ""),
            )
        return cls(image_digests=digests)

    @classmethod
    def from_file(cls, path: Optional[str]) -> "OperatorConfig":
        """
        Load configuration from a properties file.

        Args:
            path: File path, or None for an empty configuration

        Returns:
            OperatorConfig instance

        Raises:
            OSError: If the file cannot be read
        """
        if not path:
            return cls()
        logger.info(f"Reading operator configuration from {path}")
        return cls.from_properties(Path(path).read_text(encoding="utf-8"))


def _separator_index(line: str) -> int:
    positions = [i for i in (line.find("="), line.find(":")) if i >= 0]
    return min(positions) if positions else -1
