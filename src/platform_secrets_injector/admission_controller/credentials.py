import asyncio
import logging
from enum import Enum
from typing import Any, Self

from apolo_kube_client import ResourceNotFound

from platform_secrets_injector.config import (
    ConnectConfig,
    CredentialsConfig,
    ServiceAccountConfig,
)
from platform_secrets_injector.errors import ConfigurationError
from platform_secrets_injector.kube_service import KubeService

from .schema import ContainerSpec

logger = logging.getLogger(__name__)

CONNECT_HOST_ENV = "OP_CONNECT_HOST"
CONNECT_TOKEN_ENV = "OP_CONNECT_TOKEN"
SERVICE_ACCOUNT_TOKEN_ENV = "OP_SERVICE_ACCOUNT_TOKEN"  # noqa: S105


class CredentialBackend(str, Enum):
    CONNECT = "connect"
    SERVICE_ACCOUNT = "service-account"


def secret_env_var(name: str, secret_name: str, key: str) -> dict[str, Any]:
    return {
        "name": name,
        "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}},
    }


class CredentialConfigResolver:
    """
    Supplies a container with the variables the CLI needs
    to authenticate against the single active credential backend.

    Resolved once at startup, read-only afterwards.
    """

    def __init__(
        self,
        *,
        connect: ConnectConfig | None = None,
        service_account: ServiceAccountConfig | None = None,
        kube_service: KubeService | None = None,
        lookup_timeout_s: float = 5,
    ) -> None:
        if connect is not None:
            self._backend = CredentialBackend.CONNECT
        elif service_account is not None:
            self._backend = CredentialBackend.SERVICE_ACCOUNT
        else:
            raise ConfigurationError("No credential backend is configured")
        self._connect = connect
        self._service_account = service_account
        self._kube = kube_service
        self._lookup_timeout_s = lookup_timeout_s

    @classmethod
    def from_config(
        cls,
        config: CredentialsConfig,
        kube_service: KubeService | None = None,
        lookup_timeout_s: float = 5,
    ) -> Self:
        resolver = cls(
            connect=config.connect,
            service_account=config.service_account,
            kube_service=kube_service,
            lookup_timeout_s=lookup_timeout_s,
        )
        logger.info("OP CLI will be used with %s", resolver.backend.value)
        return resolver

    @property
    def backend(self) -> CredentialBackend:
        return self._backend

    async def resolve_env_vars(
        self, container: ContainerSpec, namespace: str
    ) -> list[dict[str, Any]]:
        """
        Returns the credential variables to add to a container.
        Variables the container already defines are never overwritten.
        """
        if self._backend is CredentialBackend.CONNECT:
            env = await self._resolve_connect(container, namespace)
        else:
            env = self._resolve_service_account(container)
        self._log_credentials_source(container, env)
        return env

    def _resolve_service_account(self, container: ContainerSpec) -> list[dict[str, Any]]:
        assert self._service_account is not None
        if container.has_env(SERVICE_ACCOUNT_TOKEN_ENV):
            return []
        return [
            secret_env_var(
                SERVICE_ACCOUNT_TOKEN_ENV,
                self._service_account.secret_name,
                self._service_account.token_key,
            )
        ]

    async def _resolve_connect(
        self, container: ContainerSpec, namespace: str
    ) -> list[dict[str, Any]]:
        assert self._connect is not None
        if container.has_env(CONNECT_TOKEN_ENV):
            return []
        if not await self._has_secret_key(
            self._connect.secret_name, self._connect.token_key, namespace
        ):
            return []

        env = [
            secret_env_var(
                CONNECT_TOKEN_ENV, self._connect.secret_name, self._connect.token_key
            )
        ]
        if not container.has_env(CONNECT_HOST_ENV):
            env.append({"name": CONNECT_HOST_ENV, "value": self._connect.host})
        return env

    async def _has_secret_key(self, name: str, key: str, namespace: str) -> bool:
        """
        Checks that the credential secret exists in the workload namespace.
        Any lookup failure means the variable is not injected.
        """
        if self._kube is None:
            logger.warning("kube client is not available, skipping secret %s", name)
            return False
        try:
            async with asyncio.timeout(self._lookup_timeout_s):
                data = await self._kube.get_secret_data(name, namespace=namespace)
        except ResourceNotFound:
            logger.info("secret %s not found at namespace %s", name, namespace)
            return False
        except Exception:
            logger.warning(
                "unable to look up secret %s at namespace %s",
                name,
                namespace,
                exc_info=True,
            )
            return False
        if key not in data:
            logger.info("secret %s does not define key %s", name, key)
            return False
        return True

    @staticmethod
    def _log_credentials_source(
        container: ContainerSpec, added: list[dict[str, Any]]
    ) -> None:
        names = {env.name for env in container.env} | {env["name"] for env in added}
        if CONNECT_TOKEN_ENV in names and CONNECT_HOST_ENV in names:
            logger.info("OP CLI in container %s will use Connect", container.name)
        elif SERVICE_ACCOUNT_TOKEN_ENV in names:
            logger.info(
                "OP CLI in container %s will use a Service Account", container.name
            )
        else:
            logger.info(
                "No credentials provided to authenticate OP CLI in container %s",
                container.name,
            )
