import logging
import os
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from apolo_kube_client.config import KubeClientAuthType, KubeConfig
from packaging.version import Version

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DISTRIBUTION_NAME = "platform-secrets-injector"

DEFAULT_K8S_API_URL = "https://kubernetes.default.svc"
DEFAULT_K8S_CA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
DEFAULT_K8S_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"


def _installed_version() -> str:
    """
    Release part of the installed version.
    Dev and local segments of scm versions are dropped,
    so the derived build number stays numeric.
    """
    try:
        return Version(version(DISTRIBUTION_NAME)).base_version
    except PackageNotFoundError:
        return "0.0.0"


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8443
    keep_alive_timeout_s: float = 75
    shutdown_timeout_s: float = 10

    @classmethod
    def from_environ(cls, environ: dict[str, str] | None = None) -> "ServerConfig":
        return EnvironConfigFactory(environ).create_server()


@dataclass(frozen=True)
class InjectorConfig:
    service_namespace: str
    service_name: str = "secrets-injector-svc"
    cert_secret_name: str = "secrets-injector-tls"
    build_version: str = field(default_factory=_installed_version)
    secret_lookup_timeout_s: float = 5

    @classmethod
    def from_environ(
        cls, environ: dict[str, str] | None = None
    ) -> "InjectorConfig":
        return EnvironConfigFactory(environ).create_injector()


@dataclass(frozen=True)
class ServiceAccountConfig:
    secret_name: str
    token_key: str


@dataclass(frozen=True)
class ConnectConfig:
    host: str
    secret_name: str
    token_key: str


@dataclass(frozen=True)
class CredentialsConfig:
    connect: ConnectConfig | None = None
    service_account: ServiceAccountConfig | None = None

    @classmethod
    def from_environ(
        cls, environ: dict[str, str] | None = None
    ) -> "CredentialsConfig":
        return EnvironConfigFactory(environ).create_credentials()


@dataclass(frozen=True)
class Config:
    server: ServerConfig
    injector: InjectorConfig
    credentials: CredentialsConfig
    kube: KubeConfig = field(repr=False)

    @classmethod
    def from_environ(cls, environ: dict[str, str] | None = None) -> "Config":
        return EnvironConfigFactory(environ).create()


class EnvironConfigFactory:
    def __init__(self, environ: dict[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def create(self) -> Config:
        return Config(
            server=self.create_server(),
            injector=self.create_injector(),
            credentials=self.create_credentials(),
            kube=self.create_kube(),
        )

    def _get_set(self, *names: str) -> dict[str, str] | None:
        """
        Returns the values of a group of variables,
        or None unless every one of them is set to a non-empty value.
        """
        values = {}
        for name in names:
            value = self._environ.get(name, "")
            if not value:
                logger.info("%s is not set", name)
                return None
            values[name] = value
        return values

    def create_server(self) -> ServerConfig:
        return ServerConfig(
            host=self._environ.get("SECRETS_INJECTOR_HOST", ServerConfig.host),
            port=int(self._environ.get("SECRETS_INJECTOR_PORT", ServerConfig.port)),
            keep_alive_timeout_s=float(
                self._environ.get(
                    "SECRETS_INJECTOR_KEEP_ALIVE_TIMEOUT",
                    ServerConfig.keep_alive_timeout_s,
                )
            ),
            shutdown_timeout_s=float(
                self._environ.get(
                    "SECRETS_INJECTOR_SHUTDOWN_TIMEOUT",
                    ServerConfig.shutdown_timeout_s,
                )
            ),
        )

    def create_injector(self) -> InjectorConfig:
        namespace = self._environ.get("POD_NAMESPACE")
        if not namespace:
            raise ConfigurationError("POD_NAMESPACE is not set")
        return InjectorConfig(
            service_namespace=namespace,
            service_name=self._environ.get(
                "SECRETS_INJECTOR_SERVICE_NAME", InjectorConfig.service_name
            ),
            cert_secret_name=self._environ.get(
                "SECRETS_INJECTOR_CERT_SECRET_NAME", InjectorConfig.cert_secret_name
            ),
            build_version=(
                self._environ.get("SECRETS_INJECTOR_BUILD_VERSION")
                or _installed_version()
            ),
            secret_lookup_timeout_s=float(
                self._environ.get(
                    "SECRETS_INJECTOR_SECRET_LOOKUP_TIMEOUT",
                    InjectorConfig.secret_lookup_timeout_s,
                )
            ),
        )

    def create_service_account(self) -> ServiceAccountConfig | None:
        values = self._get_set(
            "OP_SERVICE_ACCOUNT_SECRET_NAME", "OP_SERVICE_ACCOUNT_TOKEN_KEY"
        )
        if values is None:
            logger.info("Service Account config is not set")
            return None
        logger.info("Service Account config is set")
        return ServiceAccountConfig(
            secret_name=values["OP_SERVICE_ACCOUNT_SECRET_NAME"],
            token_key=values["OP_SERVICE_ACCOUNT_TOKEN_KEY"],
        )

    def create_connect(self) -> ConnectConfig | None:
        values = self._get_set(
            "OP_CONNECT_HOST", "OP_CONNECT_TOKEN_NAME", "OP_CONNECT_TOKEN_KEY"
        )
        if values is None:
            logger.info("Connect config is not set")
            return None
        logger.info("Connect config is set")
        return ConnectConfig(
            host=values["OP_CONNECT_HOST"],
            secret_name=values["OP_CONNECT_TOKEN_NAME"],
            token_key=values["OP_CONNECT_TOKEN_KEY"],
        )

    def create_credentials(self) -> CredentialsConfig:
        service_account = self.create_service_account()
        connect = self.create_connect()
        if service_account is None and connect is None:
            raise ConfigurationError(
                "Provide valid OP_CONNECT_* or OP_SERVICE_ACCOUNT_* env variables"
            )
        return CredentialsConfig(connect=connect, service_account=service_account)

    def create_kube(self) -> KubeConfig:
        endpoint_url = self._environ.get(
            "SECRETS_INJECTOR_K8S_API_URL", DEFAULT_K8S_API_URL
        )
        auth_type = KubeClientAuthType(
            self._environ.get(
                "SECRETS_INJECTOR_K8S_AUTH_TYPE", KubeClientAuthType.TOKEN.value
            )
        )
        ca_path = self._environ.get("SECRETS_INJECTOR_K8S_CA_PATH")
        if ca_path is None and Path(DEFAULT_K8S_CA_PATH).exists():
            ca_path = DEFAULT_K8S_CA_PATH
        ca_data = Path(ca_path).read_text() if ca_path else None

        return KubeConfig(
            endpoint_url=endpoint_url,
            cert_authority_data_pem=ca_data,
            auth_type=auth_type,
            auth_cert_path=self._environ.get("SECRETS_INJECTOR_K8S_AUTH_CERT_PATH"),
            auth_cert_key_path=self._environ.get(
                "SECRETS_INJECTOR_K8S_AUTH_CERT_KEY_PATH"
            ),
            token=None,
            token_path=self._environ.get(
                "SECRETS_INJECTOR_K8S_TOKEN_PATH", DEFAULT_K8S_TOKEN_PATH
            ),
            namespace=self._environ.get("POD_NAMESPACE", KubeConfig.namespace),
            client_conn_timeout_s=int(
                self._environ.get("SECRETS_INJECTOR_K8S_CLIENT_CONN_TIMEOUT")
                or KubeConfig.client_conn_timeout_s
            ),
            client_read_timeout_s=int(
                self._environ.get("SECRETS_INJECTOR_K8S_CLIENT_READ_TIMEOUT")
                or KubeConfig.client_read_timeout_s
            ),
            client_watch_timeout_s=int(
                self._environ.get("SECRETS_INJECTOR_K8S_CLIENT_WATCH_TIMEOUT")
                or KubeConfig.client_watch_timeout_s
            ),
            client_conn_pool_size=int(
                self._environ.get("SECRETS_INJECTOR_K8S_CLIENT_CONN_POOL_SIZE")
                or KubeConfig.client_conn_pool_size
            ),
        )
