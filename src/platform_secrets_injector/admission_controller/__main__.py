import asyncio
import logging
import signal
import ssl
import sys
import tempfile
from base64 import b64decode

import uvloop
from aiohttp import web
from neuro_logging import init_logging, setup_sentry

from platform_secrets_injector.admission_controller.app import create_app
from platform_secrets_injector.admission_controller.webhook_config import (
    WebhookConfigReconciler,
)
from platform_secrets_injector.config import Config
from platform_secrets_injector.errors import ConfigurationError, SecretsInjectorError
from platform_secrets_injector.kube_service import KubeService, create_kube_service

logger = logging.getLogger(__name__)


async def load_tls_secret(
    kube: KubeService, config: Config
) -> tuple[str, str, str]:
    """
    Returns the base64-encoded serving certificate, its key
    and the CA bundle to register the webhook with.
    """
    secret_name = config.injector.cert_secret_name
    namespace = config.injector.service_namespace
    try:
        secrets = await kube.get_secret_data(secret_name, namespace=namespace)
    except Exception as e:
        raise ConfigurationError(
            f"Unable to read certificate secret {namespace}/{secret_name}"
        ) from e
    try:
        tls_cert = secrets["tls.crt"]
        tls_key = secrets["tls.key"]
    except KeyError as e:
        raise ConfigurationError(
            f"Certificate secret {namespace}/{secret_name} does not define {e}"
        ) from e
    # a self-signed certificate is its own CA
    ca_bundle = secrets.get("ca.crt", tls_cert)
    return tls_cert, tls_key, ca_bundle


def create_ssl_context(tls_cert: str, tls_key: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    with tempfile.NamedTemporaryFile(mode="w", suffix=".crt") as crt_file:
        with tempfile.NamedTemporaryFile(mode="w", suffix=".key") as key_file:
            crt_file.write(b64decode(tls_cert).decode())
            key_file.write(b64decode(tls_key).decode())
            crt_file.flush()
            key_file.flush()
            context.load_cert_chain(
                certfile=crt_file.name,
                keyfile=key_file.name,
            )
    return context


async def run() -> None:
    init_logging(health_check_url_path="/ping")
    config = Config.from_environ()
    logging.info("Loaded config: %r", config)

    setup_sentry(
        health_check_url_path="/ping",
        ignore_errors=[web.HTTPNotFound],
    )

    async with create_kube_service(config.kube) as kube:
        tls_cert, tls_key, ca_bundle = await load_tls_secret(kube, config)
        # create or update the mutatingwebhookconfiguration
        await WebhookConfigReconciler(kube).reconcile(
            ca_bundle,
            service_name=config.injector.service_name,
            namespace=config.injector.service_namespace,
        )

    context = create_ssl_context(tls_cert, tls_key)

    app = await create_app(config)
    runner = web.AppRunner(app, shutdown_timeout=config.server.shutdown_timeout_s)
    done = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, done.set)

    try:
        await runner.setup()
        site = web.TCPSite(
            runner,
            config.server.host,
            config.server.port,
            ssl_context=context,
        )
        await site.start()
        logger.info("Serving on %s:%s", config.server.host, config.server.port)
        await done.wait()
        logger.info("Got OS shutdown signal, shutting down webhook server gracefully")
    except Exception as e:
        logger.exception("Unhandled error")
        raise e
    finally:
        await runner.cleanup()


def main() -> None:
    try:
        uvloop.run(run())
    except KeyboardInterrupt:
        pass
    except SecretsInjectorError:
        logger.exception("Unable to start the secrets injector")
        sys.exit(1)


if __name__ == "__main__":
    main()
