import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack

from aiohttp import web

from platform_secrets_injector.admission_controller.api import (
    AdmissionControllerApi,
    ApiHandler,
)
from platform_secrets_injector.admission_controller.app_keys import MUTATOR_KEY
from platform_secrets_injector.admission_controller.credentials import (
    CredentialConfigResolver,
)
from platform_secrets_injector.admission_controller.mutator import ContainerMutator
from platform_secrets_injector.config import Config
from platform_secrets_injector.kube_service import KubeService, create_kube_service

logger = logging.getLogger(__name__)

# the API server caps objects at ~1.5 MiB, an update review carries two of them
MAX_REQUEST_SIZE = 4 * 1024 * 1024


async def create_app(
    config: Config, kube_service: KubeService | None = None
) -> web.Application:
    app = web.Application(
        client_max_size=MAX_REQUEST_SIZE,
        handler_args={"keepalive_timeout": config.server.keep_alive_timeout_s},
    )

    async def _init_app(app: web.Application) -> AsyncIterator[None]:
        async with AsyncExitStack() as exit_stack:
            kube = kube_service
            if kube is None:
                kube = await exit_stack.enter_async_context(
                    create_kube_service(config.kube)
                )
            credentials = CredentialConfigResolver.from_config(
                config.credentials,
                kube_service=kube,
                lookup_timeout_s=config.injector.secret_lookup_timeout_s,
            )
            app[MUTATOR_KEY] = ContainerMutator(
                credentials, build_version=config.injector.build_version
            )

            yield

    app.cleanup_ctx.append(_init_app)

    ApiHandler().register(app)
    admission_controller_api = AdmissionControllerApi(app)
    admission_controller_api.register(app)

    return app
