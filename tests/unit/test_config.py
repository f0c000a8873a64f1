from importlib.metadata import PackageNotFoundError
from pathlib import Path
from unittest.mock import patch

import pytest
from apolo_kube_client.config import KubeClientAuthType

from platform_secrets_injector.config import (
    Config,
    ConnectConfig,
    CredentialsConfig,
    InjectorConfig,
    ServerConfig,
    ServiceAccountConfig,
)
from platform_secrets_injector.errors import ConfigurationError


CA_DATA_PEM = "this-is-certificate-authority-public-key"

SERVICE_ACCOUNT_ENVIRON = {
    "OP_SERVICE_ACCOUNT_SECRET_NAME": "op-service-account",
    "OP_SERVICE_ACCOUNT_TOKEN_KEY": "token",
}

CONNECT_ENVIRON = {
    "OP_CONNECT_HOST": "http://onepassword-connect:8080",
    "OP_CONNECT_TOKEN_NAME": "onepassword-token",
    "OP_CONNECT_TOKEN_KEY": "token",
}


@pytest.fixture
def cert_authority_path(tmp_path: Path) -> str:
    ca_path = tmp_path / "ca.crt"
    ca_path.write_text(CA_DATA_PEM)
    return str(ca_path)


class TestServerConfig:
    def test_from_environ(self) -> None:
        environ = {
            "SECRETS_INJECTOR_PORT": "9443",
            "SECRETS_INJECTOR_SHUTDOWN_TIMEOUT": "2.5",
        }
        config = ServerConfig.from_environ(environ)
        assert config.port == 9443
        assert config.shutdown_timeout_s == 2.5

    def test_defaults(self) -> None:
        environ: dict[str, str] = {}
        config = ServerConfig.from_environ(environ)
        assert config == ServerConfig(
            host="0.0.0.0", port=8443, keep_alive_timeout_s=75, shutdown_timeout_s=10
        )


class TestInjectorConfig:
    def test_from_environ(self) -> None:
        environ = {
            "POD_NAMESPACE": "op",
            "SECRETS_INJECTOR_SERVICE_NAME": "injector",
            "SECRETS_INJECTOR_CERT_SECRET_NAME": "injector-tls",
            "SECRETS_INJECTOR_BUILD_VERSION": "1.5.6",
            "SECRETS_INJECTOR_SECRET_LOOKUP_TIMEOUT": "1",
        }
        assert InjectorConfig.from_environ(environ) == InjectorConfig(
            service_namespace="op",
            service_name="injector",
            cert_secret_name="injector-tls",
            build_version="1.5.6",
            secret_lookup_timeout_s=1,
        )

    def test_defaults(self) -> None:
        config = InjectorConfig.from_environ({"POD_NAMESPACE": "op"})
        assert config.service_name == "secrets-injector-svc"
        assert config.cert_secret_name == "secrets-injector-tls"
        assert config.secret_lookup_timeout_s == 5
        assert config.build_version

    @pytest.mark.parametrize(
        "installed,expected",
        [
            ("1.5.6", "1.5.6"),
            ("1.2.3.dev4+gabc1234", "1.2.3"),
            ("2.0.1+g1a2b3c4.d20240101", "2.0.1"),
        ],
    )
    def test_build_version_from_installed(
        self, installed: str, expected: str
    ) -> None:
        with patch("platform_secrets_injector.config.version", return_value=installed):
            config = InjectorConfig.from_environ({"POD_NAMESPACE": "op"})
        assert config.build_version == expected

    def test_build_version_not_installed(self) -> None:
        with patch(
            "platform_secrets_injector.config.version",
            side_effect=PackageNotFoundError,
        ):
            config = InjectorConfig.from_environ({"POD_NAMESPACE": "op"})
        assert config.build_version == "0.0.0"

    def test_namespace_is_required(self) -> None:
        with pytest.raises(ConfigurationError, match="POD_NAMESPACE"):
            InjectorConfig.from_environ({})


class TestCredentialsConfig:
    def test_service_account(self) -> None:
        config = CredentialsConfig.from_environ(SERVICE_ACCOUNT_ENVIRON)
        assert config == CredentialsConfig(
            service_account=ServiceAccountConfig(
                secret_name="op-service-account", token_key="token"
            )
        )

    def test_connect(self) -> None:
        config = CredentialsConfig.from_environ(CONNECT_ENVIRON)
        assert config == CredentialsConfig(
            connect=ConnectConfig(
                host="http://onepassword-connect:8080",
                secret_name="onepassword-token",
                token_key="token",
            )
        )

    def test_both(self) -> None:
        config = CredentialsConfig.from_environ(
            {**CONNECT_ENVIRON, **SERVICE_ACCOUNT_ENVIRON}
        )
        assert config.connect is not None
        assert config.service_account is not None

    def test_partially_set_group_is_ignored(self) -> None:
        environ = {**SERVICE_ACCOUNT_ENVIRON, "OP_CONNECT_HOST": "http://connect"}
        config = CredentialsConfig.from_environ(environ)
        assert config.connect is None
        assert config.service_account is not None

    def test_empty_value_is_not_set(self) -> None:
        environ = {**SERVICE_ACCOUNT_ENVIRON, "OP_SERVICE_ACCOUNT_TOKEN_KEY": ""}
        with pytest.raises(ConfigurationError):
            CredentialsConfig.from_environ(environ)

    def test_none_set(self) -> None:
        with pytest.raises(ConfigurationError, match="OP_CONNECT_"):
            CredentialsConfig.from_environ({})


class TestConfig:
    def test_from_environ(self, cert_authority_path: str) -> None:
        environ = {
            "POD_NAMESPACE": "op",
            **SERVICE_ACCOUNT_ENVIRON,
            "SECRETS_INJECTOR_K8S_API_URL": "https://kubernetes:6443",
            "SECRETS_INJECTOR_K8S_CA_PATH": cert_authority_path,
            "SECRETS_INJECTOR_K8S_TOKEN_PATH": "/path/to/token",
        }
        config = Config.from_environ(environ)

        assert config.injector.service_namespace == "op"
        assert config.server.port == 8443
        assert config.credentials.service_account is not None
        assert config.kube.endpoint_url == "https://kubernetes:6443"
        assert config.kube.cert_authority_data_pem == CA_DATA_PEM
        assert config.kube.auth_type == KubeClientAuthType.TOKEN
        assert config.kube.namespace == "op"

    def test_kube_config_is_not_printed(self, cert_authority_path: str) -> None:
        environ = {
            "POD_NAMESPACE": "op",
            **SERVICE_ACCOUNT_ENVIRON,
            "SECRETS_INJECTOR_K8S_CA_PATH": cert_authority_path,
        }
        assert CA_DATA_PEM not in repr(Config.from_environ(environ))
