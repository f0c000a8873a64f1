from aiohttp import web

from platform_secrets_injector.admission_controller.mutator import ContainerMutator


MUTATOR_KEY = web.AppKey("mutator", ContainerMutator)
