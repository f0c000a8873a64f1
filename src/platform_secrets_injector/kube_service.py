from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from apolo_kube_client import (
    KubeClient,
    ResourceNotFound,
    V1MutatingWebhookConfiguration,
)
from apolo_kube_client.client import kube_client_from_config
from apolo_kube_client.config import KubeConfig


class KubeService:
    """
    Kube methods used by the secrets injector.
    Cluster objects cross this boundary in their wire (camelCase) shape.
    """

    def __init__(self, kube_client: KubeClient):
        self._kube = kube_client

    @property
    def _webhook_configurations(self) -> Any:
        return self._kube.admission_registration_k8s_io_v1.mutating_webhook_configuration

    @staticmethod
    def _dump(model: V1MutatingWebhookConfiguration) -> dict[str, Any]:
        return model.model_dump(by_alias=True, exclude_none=True)

    async def get_secret_data(self, name: str, namespace: str) -> dict[str, str]:
        """
        Returns the base64-encoded data of a secret.
        Raises ResourceNotFound when the secret does not exist.
        """
        secret = await self._kube.core_v1.secret.get(name, namespace=namespace)
        return dict(secret.data or {})

    async def get_mutating_webhook_configuration(
        self, name: str
    ) -> dict[str, Any] | None:
        try:
            found = await self._webhook_configurations.get(name)
        except ResourceNotFound:
            return None
        return self._dump(found)

    async def create_mutating_webhook_configuration(
        self, body: dict[str, Any]
    ) -> dict[str, Any]:
        model = V1MutatingWebhookConfiguration.model_validate(body)
        return self._dump(await self._webhook_configurations.create(model))

    async def update_mutating_webhook_configuration(
        self, body: dict[str, Any]
    ) -> dict[str, Any]:
        model = V1MutatingWebhookConfiguration.model_validate(body)
        return self._dump(await self._webhook_configurations.update(model))


@asynccontextmanager
async def create_kube_service(config: KubeConfig) -> AsyncIterator[KubeService]:
    async with kube_client_from_config(config) as kube_client:
        yield KubeService(kube_client)
