import dataclasses
import logging
from collections.abc import Sequence
from typing import Any

from platform_secrets_injector.utils import make_build_version

from .credentials import CredentialConfigResolver
from .eligibility import ANNOTATION_STATUS, STATUS_INJECTED, EligibilityDecision
from .patch import (
    BIN_VOLUME,
    BOOTSTRAP_CONTAINER_NAME,
    CONTAINERS_PATH,
    INIT_CONTAINERS_PATH,
    VOLUMES_PATH,
    PatchOperation,
    add_containers,
    add_volumes,
    create_bootstrap_container,
    mutate_container_core,
    prepend_containers,
    set_container_env,
    update_annotations,
)
from .schema import ContainerSpec, Workload

logger = logging.getLogger(__name__)

INTEGRATION_NAME_ENV = "OP_INTEGRATION_NAME"
INTEGRATION_ID_ENV = "OP_INTEGRATION_ID"
INTEGRATION_BUILD_NUMBER_ENV = "OP_INTEGRATION_BUILDNUMBER"

INTEGRATION_NAME = "1Password Kubernetes Webhook"
INTEGRATION_ID = "K8W"


@dataclasses.dataclass(frozen=True)
class MutationResult:
    mutated: bool
    patch: list[PatchOperation] = dataclasses.field(default_factory=list)


class ContainerMutator:
    """
    Wraps the entrypoint of every targeted container with the CLI
    and assembles the workload-level operations around it.
    """

    def __init__(
        self, credentials: CredentialConfigResolver, build_version: str
    ) -> None:
        self._credentials = credentials
        self._build_number = make_build_version(build_version)

    def _integration_env(self, container: ContainerSpec) -> list[dict[str, Any]]:
        env = [
            {"name": INTEGRATION_NAME_ENV, "value": INTEGRATION_NAME},
            {"name": INTEGRATION_ID_ENV, "value": INTEGRATION_ID},
            {"name": INTEGRATION_BUILD_NUMBER_ENV, "value": self._build_number},
        ]
        return [e for e in env if not container.has_env(e["name"])]

    async def mutate_container(
        self,
        container: ContainerSpec,
        container_index: int,
        namespace: str,
        base_path: str = CONTAINERS_PATH,
    ) -> list[PatchOperation]:
        """
        Raises MutationError if the container does not define a command.
        """
        patch = mutate_container_core(container, container_index, base_path)

        added_env = await self._credentials.resolve_env_vars(container, namespace)
        # passing User-Agent information to the CLI
        added_env += self._integration_env(container)

        # a single builder call, so an empty env list is created exactly once
        patch += set_container_env(container, container_index, added_env, base_path)
        return patch

    async def _mutate_list(
        self,
        containers: Sequence[ContainerSpec],
        targets: frozenset[str],
        namespace: str,
        base_path: str,
    ) -> tuple[bool, list[PatchOperation]]:
        mutated = False
        patch: list[PatchOperation] = []
        for idx, container in enumerate(containers):
            # do not mutate our own init container
            if container.name == BOOTSTRAP_CONTAINER_NAME:
                continue
            if container.name not in targets:
                continue
            patch += await self.mutate_container(container, idx, namespace, base_path)
            mutated = True
            logger.info("container %s at %s will be mutated", container.name, base_path)
        return mutated, patch

    async def mutate_targets(
        self, workload: Workload, decision: EligibilityDecision, namespace: str
    ) -> tuple[bool, list[PatchOperation]]:
        """
        Mutates every targeted container.
        A MutationError aborts the whole operation and nothing is returned.
        """
        mutated = False
        patch: list[PatchOperation] = []
        spec = workload.spec
        targets = decision.target_container_names

        if decision.mutate_init_containers_first:
            init_mutated, init_patch = await self._mutate_list(
                spec.init_containers, targets, namespace, INIT_CONTAINERS_PATH
            )
            mutated |= init_mutated
            patch += init_patch

        containers_mutated, containers_patch = await self._mutate_list(
            spec.containers, targets, namespace, CONTAINERS_PATH
        )
        mutated |= containers_mutated
        patch += containers_patch
        return mutated, patch

    async def mutate(
        self, workload: Workload, decision: EligibilityDecision, namespace: str
    ) -> MutationResult:
        """
        Produces the full patch for a workload:
        per-container operations first, then the shared volume,
        the bootstrap init container and the status annotation.
        """
        mutated, patch = await self.mutate_targets(workload, decision, namespace)
        if not mutated:
            return MutationResult(mutated=False)

        spec = workload.spec
        patch += add_volumes(spec.volumes, [dict(BIN_VOLUME)], VOLUMES_PATH)

        bootstrap = create_bootstrap_container(decision.cli_version_tag)
        # container ops above address the original indices,
        # so the bootstrap container is inserted after all of them
        if decision.mutate_init_containers_first:
            patch += prepend_containers(
                spec.init_containers, [bootstrap], INIT_CONTAINERS_PATH
            )
        else:
            patch += add_containers(
                spec.init_containers, [bootstrap], INIT_CONTAINERS_PATH
            )

        patch += update_annotations(
            workload.metadata.annotations, {ANNOTATION_STATUS: STATUS_INJECTED}
        )
        return MutationResult(mutated=True, patch=patch)
