import dataclasses
import logging

from .patch import BOOTSTRAP_CONTAINER_NAME
from .schema import ObjectMeta

logger = logging.getLogger(__name__)

ANNOTATION_PREFIX = "operator.1password.io"
ANNOTATION_INJECT = f"{ANNOTATION_PREFIX}/inject"
ANNOTATION_STATUS = f"{ANNOTATION_PREFIX}/status"
ANNOTATION_INJECTOR_INIT_FIRST = f"{ANNOTATION_PREFIX}/injector-init-first"
ANNOTATION_VERSION = f"{ANNOTATION_PREFIX}/version"

STATUS_INJECTED = "injected"
DEFAULT_CLI_VERSION = "2"


@dataclasses.dataclass(frozen=True)
class EligibilityDecision:
    required: bool
    target_container_names: frozenset[str] = frozenset()
    cli_version_tag: str = DEFAULT_CLI_VERSION
    mutate_init_containers_first: bool = False


def parse_target_names(value: str) -> frozenset[str]:
    names = (name.strip() for name in value.split(","))
    # the bootstrap container is ours, it is never wrapped
    return frozenset(
        name for name in names if name and name != BOOTSTRAP_CONTAINER_NAME
    )


def decide(metadata: ObjectMeta) -> EligibilityDecision:
    """
    Decides whether a workload should have secrets injected.
    A workload opts in with a non-empty inject annotation,
    and is skipped once it carries the injected status.
    """
    annotations = metadata.annotations
    status = annotations.get(ANNOTATION_STATUS, "")
    inject = annotations.get(ANNOTATION_INJECT, "")

    required = bool(inject) and status.lower() != STATUS_INJECTED
    logger.info(
        "Pod %s at namespace %s. Secret injection status: %r, required: %s",
        metadata.name,
        metadata.namespace,
        status,
        required,
    )
    if not required:
        return EligibilityDecision(required=False)

    return EligibilityDecision(
        required=True,
        target_container_names=parse_target_names(inject),
        cli_version_tag=annotations.get(ANNOTATION_VERSION) or DEFAULT_CLI_VERSION,
        mutate_init_containers_first=(
            annotations.get(ANNOTATION_INJECTOR_INIT_FIRST, "").lower() == "true"
        ),
    )
