"""
Provider credentials — one typed shape per supported cloud.

Each variant validates its required fields at construction time and
renders the environment variables Cluster API's ``clusterctl`` expects
for that infrastructure provider.  The variants form a discriminated
union on ``provider`` so a raw mapping (CLI flags, config files) can
be validated into exactly one of them.
"""

from __future__ import annotations

import base64
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, ValidationError

from kubepivot.core.errors import ConfigError, MissingCredentialError


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class _ProviderCredentials(BaseModel):
    """Shared behaviour for all provider variants."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # clusterctl --infrastructure name and the provider's short tag
    infrastructure: ClassVar[str] = ""
    provider_tag: ClassVar[str] = ""
    # namespace the provider's controllers run in
    controller_namespace: ClassVar[str] = ""
    # env keys that must be non-empty before anything is submitted
    required_keys: ClassVar[tuple[str, ...]] = ()

    def to_env(self) -> dict[str, str]:
        raise NotImplementedError

    def missing_keys(self) -> list[str]:
        """Required env keys whose value is empty."""
        env = self.to_env()
        return [key for key in self.required_keys if not env.get(key)]

    def summary(self) -> dict[str, str]:
        """Non-secret description, safe to log and persist."""
        return {"provider": self.infrastructure}


class AzureCredentials(_ProviderCredentials):
    """Azure (CAPZ) service-principal credentials and machine selection."""

    infrastructure: ClassVar[str] = "azure"
    provider_tag: ClassVar[str] = "capz"
    controller_namespace: ClassVar[str] = "capz-system"
    required_keys: ClassVar[tuple[str, ...]] = (
        "AZURE_LOCATION",
        "AZURE_CLIENT_ID",
        "AZURE_CLIENT_SECRET",
        "AZURE_TENANT_ID",
        "AZURE_SUBSCRIPTION_ID",
        "AZURE_RESOURCE_GROUP",
    )

    provider: Literal["azure"] = "azure"
    region: str = Field(default="westus2", min_length=1)
    app_id: str = Field(min_length=1)
    app_secret: SecretStr
    tenant_id: str = Field(min_length=1)
    subscription_id: str = Field(min_length=1)
    ssh_key: str = "default"
    control_plane_machine: str = "Standard_D2s_v3"
    node_machine: str = "Standard_D2s_v3"
    resource_group: str = Field(default="kubepivot-cluster", min_length=1)

    def to_env(self) -> dict[str, str]:
        secret = self.app_secret.get_secret_value()
        return {
            "AZURE_LOCATION": self.region,
            "AZURE_CLIENT_ID": self.app_id,
            "AZURE_CLIENT_SECRET": secret,
            "AZURE_TENANT_ID": self.tenant_id,
            "AZURE_SUBSCRIPTION_ID": self.subscription_id,
            "AZURE_CONTROL_PLANE_MACHINE_TYPE": self.control_plane_machine,
            "AZURE_NODE_MACHINE_TYPE": self.node_machine,
            "AZURE_SSH_KEY": self.ssh_key,
            "AZURE_RESOURCE_GROUP": self.resource_group,
            # consumed by the provider components at `clusterctl init`
            "AZURE_CLIENT_ID_B64": _b64(self.app_id),
            "AZURE_CLIENT_SECRET_B64": _b64(secret),
            "AZURE_TENANT_ID_B64": _b64(self.tenant_id),
            "AZURE_SUBSCRIPTION_ID_B64": _b64(self.subscription_id),
        }

    def summary(self) -> dict[str, str]:
        return {
            "provider": self.infrastructure,
            "region": self.region,
            "resource_group": self.resource_group,
        }


class AwsCredentials(_ProviderCredentials):
    """AWS (CAPA) access keys and machine selection."""

    infrastructure: ClassVar[str] = "aws"
    provider_tag: ClassVar[str] = "capa"
    controller_namespace: ClassVar[str] = "capa-system"
    required_keys: ClassVar[tuple[str, ...]] = (
        "AWS_REGION",
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
    )

    provider: Literal["aws"] = "aws"
    region: str = Field(default="us-east-1", min_length=1)
    access_key_id: str = Field(min_length=1)
    secret_access_key: SecretStr
    ssh_key_name: str = "default"
    control_plane_machine: str = "m5.xlarge"
    node_machine: str = "m5.xlarge"

    def to_env(self) -> dict[str, str]:
        secret = self.secret_access_key.get_secret_value()
        # Same shape `clusterawsadm bootstrap credentials encode-as-profile` emits
        profile = (
            "[default]\n"
            f"aws_access_key_id = {self.access_key_id}\n"
            f"aws_secret_access_key = {secret}\n"
            f"region = {self.region}\n"
        )
        return {
            "AWS_REGION": self.region,
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": secret,
            "AWS_SSH_KEY_NAME": self.ssh_key_name,
            "AWS_CONTROL_PLANE_MACHINE_TYPE": self.control_plane_machine,
            "AWS_NODE_MACHINE_TYPE": self.node_machine,
            "AWS_B64ENCODED_CREDENTIALS": _b64(profile),
        }

    def summary(self) -> dict[str, str]:
        return {"provider": self.infrastructure, "region": self.region}


ProviderCredentials = Annotated[
    Union[AzureCredentials, AwsCredentials],
    Field(discriminator="provider"),
]

PROVIDERS: dict[str, type[_ProviderCredentials]] = {
    "azure": AzureCredentials,
    "aws": AwsCredentials,
}

_adapter: TypeAdapter[Any] = TypeAdapter(ProviderCredentials)


def from_mapping(provider: str, values: dict[str, Any]) -> AzureCredentials | AwsCredentials:
    """Validate a raw mapping into the variant for ``provider``.

    Empty strings count as missing.  Every missing field is reported in
    one ``MissingCredentialError`` rather than failing on the first.

    Raises:
        ConfigError: Unknown provider or malformed values.
        MissingCredentialError: Required fields absent or empty.
    """
    if provider not in PROVIDERS:
        raise ConfigError(
            f"Unsupported provider '{provider}'. Valid: {', '.join(sorted(PROVIDERS))}"
        )

    data = {k: v for k, v in values.items() if v not in (None, "")}
    data["provider"] = provider

    try:
        return _adapter.validate_python(data)
    except ValidationError as e:
        missing = [
            ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0])
            for err in e.errors()
            if err["type"] == "missing"
        ]
        if missing:
            raise MissingCredentialError(provider, missing) from e
        raise ConfigError(f"Invalid {provider} credentials: {e}") from e
