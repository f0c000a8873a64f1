from typing import Any

from platform_secrets_injector.admission_controller.schema import Workload

BUILD_VERSION = "1.5.6"
BUILD_NUMBER = "1050601"


def make_workload(
    annotations: dict[str, str] | None = None,
    containers: list[dict[str, Any]] | None = None,
    init_containers: list[dict[str, Any]] | None = None,
    volumes: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    A raw pod, as it arrives inside an admission request.
    """
    pod: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "test-pod", "namespace": "default"},
        "spec": {"containers": containers or []},
    }
    if annotations is not None:
        pod["metadata"]["annotations"] = annotations
    if init_containers is not None:
        pod["spec"]["initContainers"] = init_containers
    if volumes is not None:
        pod["spec"]["volumes"] = volumes
    return pod


def parse_workload(pod: dict[str, Any]) -> Workload:
    return Workload.model_validate(pod)
