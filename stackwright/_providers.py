"""Typed provider settings and their translation to backend configuration.

Each provider gets its own settings record. ``provider_settings_for`` builds
the record from the free-form ``provider_config`` mapping of a deployment and
``to_backend_config`` flattens it to the variable map the backend expects.

Examples
--------
>>> settings = provider_settings_for(CloudProvider.GCP, {"projectId": "acme"})
>>> settings.to_backend_config()
{'gcp_project': 'acme', 'gcp_region': 'us-central1'}
"""

from __future__ import annotations

from collections import abc as cabc
from dataclasses import dataclass
from typing import Any

from stackwright._errors import ConfigurationError
from stackwright._models import CloudProvider


@dataclass(frozen=True, slots=True)
class AwsSettings:
    """AWS provider settings."""

    region: str = "us-east-1"

    def to_backend_config(self) -> dict[str, str]:
        return {"aws_region": self.region}


@dataclass(frozen=True, slots=True)
class FirebaseSettings:
    """Firebase settings; Firebase projects are GCP projects."""

    project_id: str

    def to_backend_config(self) -> dict[str, str]:
        return {"gcp_project": self.project_id}


@dataclass(frozen=True, slots=True)
class AzureSettings:
    """Azure provider settings."""

    location: str = "eastus"

    def to_backend_config(self) -> dict[str, str]:
        return {"azure_location": self.location}


@dataclass(frozen=True, slots=True)
class GcpSettings:
    """Google Cloud provider settings."""

    project_id: str
    region: str = "us-central1"

    def to_backend_config(self) -> dict[str, str]:
        return {"gcp_project": self.project_id, "gcp_region": self.region}


@dataclass(frozen=True, slots=True)
class LocalSettings:
    """Local provider; carries no backend configuration."""

    def to_backend_config(self) -> dict[str, str]:
        return {}


type ProviderSettings = (
    AwsSettings | FirebaseSettings | AzureSettings | GcpSettings | LocalSettings
)


def _lookup(config: cabc.Mapping[str, Any], *keys: str) -> str | None:
    """Return the first non-empty value among ``keys`` as a string."""
    for key in keys:
        value = config.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _require_project(provider: CloudProvider, config: cabc.Mapping[str, Any]) -> str:
    project_id = _lookup(config, "projectId", "project_id")
    if project_id is None:
        msg = f"Provider {provider} requires providerConfig.projectId"
        raise ConfigurationError(msg)
    return project_id


def provider_settings_for(
    provider: CloudProvider | str,
    config: cabc.Mapping[str, Any],
) -> ProviderSettings:
    """Build typed settings for ``provider`` from a free-form mapping.

    Parameters
    ----------
    provider
        Provider identifier.
    config
        Provider configuration; ``region``, ``location``, ``projectId`` and
        ``project_id`` are recognised.

    Returns
    -------
    ProviderSettings
        Settings record for the provider.

    Raises
    ------
    ConfigurationError
        If the provider is unknown or a required setting is missing.

    Examples
    --------
    >>> provider_settings_for("aws", {"region": "eu-west-1"})
    AwsSettings(region='eu-west-1')
    >>> provider_settings_for("azure", {})
    AzureSettings(location='eastus')
    """
    try:
        kind = CloudProvider(str(provider))
    except ValueError as exc:
        msg = f"Unknown provider: {provider}"
        raise ConfigurationError(msg) from exc

    match kind:
        case CloudProvider.AWS:
            region = _lookup(config, "region")
            return AwsSettings(region=region) if region else AwsSettings()
        case CloudProvider.FIREBASE:
            return FirebaseSettings(project_id=_require_project(kind, config))
        case CloudProvider.AZURE:
            location = _lookup(config, "location", "region")
            return AzureSettings(location=location) if location else AzureSettings()
        case CloudProvider.GCP:
            project_id = _require_project(kind, config)
            region = _lookup(config, "region")
            if region:
                return GcpSettings(project_id=project_id, region=region)
            return GcpSettings(project_id=project_id)
        case CloudProvider.LOCAL:
            return LocalSettings()
