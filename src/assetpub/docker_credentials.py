"""
Registry credentials for Docker logins.

ECR credentials come from ``GetAuthorizationToken``. Additional registries
(for example a private base-image registry) can be described in an optional
JSON file mapping registry domains to a Secrets Manager secret or to ECR::

    {
      "version": "0.1",
      "domainCredentials": {
        "registry.example.com": {
          "secretsManagerSecretId": "arn:aws:secretsmanager:...",
          "secretsUsernameField": "user",
          "secretsPasswordField": "token",
          "assumeRoleArn": "arn:aws:iam::123456789012:role/read-secret"
        },
        "123456789012.dkr.ecr.eu-west-1.amazonaws.com": {"ecrRepository": true}
      }
    }

The file location is ``ASSETPUB_DOCKER_CREDS_FILE``
(default ``~/.assetpub/docker-creds.json``).
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Union
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from assetpub.aws import AwsClient, ClientOptions, EcrClient
from assetpub.config import get_settings
from assetpub.core.errors import ConfigurationError, ProviderError

logger = structlog.get_logger()


class _CredentialsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class DockerDomainCredentialSource(_CredentialsModel):
    secrets_manager_secret_id: Optional[str] = None
    secrets_username_field: Optional[str] = None
    secrets_password_field: Optional[str] = None
    ecr_repository: Union[bool, str, None] = None
    assume_role_arn: Optional[str] = None
    assume_role_external_id: Optional[str] = None


class DockerCredentialsConfig(_CredentialsModel):
    version: str
    domain_credentials: Dict[str, DockerDomainCredentialSource] = {}


@dataclass(frozen=True)
class DockerLoginCredentials:
    username: str
    secret: str


@dataclass(frozen=True)
class EcrCredentials:
    username: str
    password: str
    endpoint: str


def credentials_config_file() -> Path:
    return Path(get_settings().docker_creds_file).expanduser()


def credentials_config() -> Optional[DockerCredentialsConfig]:
    """Load the registry credentials file, or None when there is none."""
    return _load_credentials_config(credentials_config_file())


@lru_cache
def _load_credentials_config(path: Path) -> Optional[DockerCredentialsConfig]:
    if not path.exists():
        return None
    try:
        config = DockerCredentialsConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, SchemaError) as exc:
        raise ConfigurationError(f"Invalid docker credentials file {path}: {exc}") from exc
    logger.debug("docker_credentials_loaded", path=str(path), domains=len(config.domain_credentials))
    return config


def clear_credentials_config_cache() -> None:
    _load_credentials_config.cache_clear()


def _domain_of(endpoint: str) -> str:
    if "://" in endpoint:
        return urlparse(endpoint).netloc
    return endpoint.split("/")[0]


async def fetch_docker_login_credentials(
    aws: AwsClient,
    config: DockerCredentialsConfig,
    endpoint: str,
) -> DockerLoginCredentials:
    """Fetch login credentials for the registry hosting ``endpoint``."""
    domain = _domain_of(endpoint)
    source = config.domain_credentials.get(domain)
    if source is None:
        raise ConfigurationError(f"unknown domain {domain}")

    options = ClientOptions(
        assume_role_arn=source.assume_role_arn,
        assume_role_external_id=source.assume_role_external_id,
    )

    if source.secrets_manager_secret_id:
        secrets = await aws.secrets_manager_client(options)
        response = await secrets.get_secret_value(source.secrets_manager_secret_id)
        secret_string = response.get("SecretString")
        if not secret_string:
            raise ProviderError(
                f"unable to fetch SecretString from secret: {source.secrets_manager_secret_id}"
            )

        try:
            secret = json.loads(secret_string)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"malformed secret string in {source.secrets_manager_secret_id}: not valid JSON"
            ) from exc
        if not isinstance(secret, dict):
            raise ConfigurationError(
                f"malformed secret string in {source.secrets_manager_secret_id}: expected a JSON object"
            )

        username_field = source.secrets_username_field or "username"
        password_field = source.secrets_password_field or "secret"
        for name in (username_field, password_field):
            if not secret.get(name):
                raise ConfigurationError(f'malformed secret string ("{name}" field missing)')
        return DockerLoginCredentials(username=secret[username_field], secret=secret[password_field])

    if source.ecr_repository:
        ecr = await aws.ecr_client(options)
        credentials = await obtain_ecr_credentials(ecr)
        return DockerLoginCredentials(username=credentials.username, secret=credentials.password)

    raise ConfigurationError("unknown credential type: no secret ID or ECR repo")


async def obtain_ecr_credentials(ecr: EcrClient) -> EcrCredentials:
    """Decode the first authorization token returned by ECR."""
    response = await ecr.get_authorization_token()
    data = (response.get("authorizationData") or [{}])[0]
    token = data.get("authorizationToken")
    if not token:
        raise ProviderError("No authorization data received from ECR")

    username, _, password = base64.b64decode(token).decode("ascii").partition(":")
    if not username or not password:
        raise ProviderError("unexpected ECR authData format")

    return EcrCredentials(username=username, password=password, endpoint=data.get("proxyEndpoint", ""))
