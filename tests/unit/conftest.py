from unittest.mock import AsyncMock, Mock

import pytest
from apolo_kube_client import ResourceNotFound

from platform_secrets_injector.admission_controller.credentials import (
    CredentialConfigResolver,
)
from platform_secrets_injector.admission_controller.mutator import ContainerMutator
from platform_secrets_injector.config import ConnectConfig, ServiceAccountConfig
from platform_secrets_injector.kube_service import KubeService
from tests.unit.helpers import BUILD_VERSION


@pytest.fixture
def service_account_config() -> ServiceAccountConfig:
    return ServiceAccountConfig(
        secret_name="onepassword-service-account-token",
        token_key="token",
    )


@pytest.fixture
def connect_config() -> ConnectConfig:
    return ConnectConfig(
        host="http://onepassword-connect:8080",
        secret_name="onepassword-token",
        token_key="token",
    )


@pytest.fixture
def kube_service() -> Mock:
    """
    Kube API without any secrets.
    """
    kube_service = Mock(spec=KubeService)
    kube_service.get_secret_data = AsyncMock(side_effect=ResourceNotFound)
    return kube_service


@pytest.fixture
def kube_service_with_token(kube_service: Mock) -> Mock:
    kube_service.get_secret_data = AsyncMock(return_value={"token": "dG9rZW4="})
    return kube_service


@pytest.fixture
def service_account_credentials(
    service_account_config: ServiceAccountConfig,
    kube_service: Mock,
) -> CredentialConfigResolver:
    return CredentialConfigResolver(
        service_account=service_account_config,
        kube_service=kube_service,
    )


@pytest.fixture
def connect_credentials(
    connect_config: ConnectConfig,
    kube_service_with_token: Mock,
) -> CredentialConfigResolver:
    return CredentialConfigResolver(
        connect=connect_config,
        kube_service=kube_service_with_token,
    )


@pytest.fixture
def mutator(service_account_credentials: CredentialConfigResolver) -> ContainerMutator:
    return ContainerMutator(service_account_credentials, build_version=BUILD_VERSION)
