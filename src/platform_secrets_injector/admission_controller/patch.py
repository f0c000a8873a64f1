"""
JSON patch builders.

Every builder is pure: given the same inputs it returns the same
operations, in the same order, with the same paths.

A strict patch applier rejects appending (`<path>/-`) onto a list which
does not exist yet, so every list builder branches on whether the
target list is empty: an empty target gets a single `add` carrying the
whole new list, a non-empty one gets an `add` per element.
"""

import dataclasses
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from platform_secrets_injector.errors import MutationError

from .schema import ContainerSpec

CONTAINERS_PATH = "/spec/containers"
INIT_CONTAINERS_PATH = "/spec/initContainers"
VOLUMES_PATH = "/spec/volumes"
ANNOTATIONS_PATH = "/metadata/annotations"

BIN_VOLUME_NAME = "op-bin"
BIN_VOLUME_MOUNT_PATH = "/op/bin/"
TOOL_PATH = BIN_VOLUME_MOUNT_PATH + "op"

BOOTSTRAP_CONTAINER_NAME = "copy-op-bin"
BOOTSTRAP_IMAGE = "1password/op"

BIN_VOLUME: dict[str, Any] = {
    "name": BIN_VOLUME_NAME,
    "emptyDir": {"medium": "Memory"},
}

BIN_VOLUME_MOUNT: dict[str, Any] = {
    "name": BIN_VOLUME_NAME,
    "mountPath": BIN_VOLUME_MOUNT_PATH,
    "readOnly": True,
}


class PatchOp(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


@dataclasses.dataclass(frozen=True)
class PatchOperation:
    op: PatchOp
    path: str
    value: Any = None

    def to_primitive(self) -> dict[str, Any]:
        result: dict[str, Any] = {"op": self.op.value, "path": self.path}
        if self.op is not PatchOp.REMOVE:
            result["value"] = self.value
        return result


def escape_pointer_token(token: str) -> str:
    """Escapes a single JSON pointer reference token (RFC 6901)"""
    return token.replace("~", "~0").replace("/", "~1")


def create_bootstrap_container(version_tag: str) -> dict[str, Any]:
    """
    The init container which copies the CLI binary into the shared volume.
    """
    return {
        "name": BOOTSTRAP_CONTAINER_NAME,
        "image": f"{BOOTSTRAP_IMAGE}:{version_tag}",
        "imagePullPolicy": "IfNotPresent",
        "command": ["sh", "-c", f"cp /usr/local/bin/op {BIN_VOLUME_MOUNT_PATH}"],
        "volumeMounts": [
            {
                "name": BIN_VOLUME_NAME,
                "mountPath": BIN_VOLUME_MOUNT_PATH,
            }
        ],
    }


def _add_items(
    target: Sequence[Any], added: Sequence[Any], base_path: str
) -> list[PatchOperation]:
    if not added:
        return []
    if not target:
        return [PatchOperation(PatchOp.ADD, base_path, list(added))]
    return [PatchOperation(PatchOp.ADD, f"{base_path}/-", item) for item in added]


def add_volumes(
    target: Sequence[Any], added: Sequence[Mapping[str, Any]], base_path: str
) -> list[PatchOperation]:
    return _add_items(target, added, base_path)


def add_containers(
    target: Sequence[Any], added: Sequence[Mapping[str, Any]], base_path: str
) -> list[PatchOperation]:
    return _add_items(target, added, base_path)


def prepend_containers(
    target: Sequence[Any], added: Sequence[Mapping[str, Any]], base_path: str
) -> list[PatchOperation]:
    """
    Adds containers to the beginning of the target list.
    Elements are inserted at the head in reverse,
    so they end up in their original relative order.
    """
    if not target:
        return add_containers(target, added, base_path)
    return [
        PatchOperation(PatchOp.ADD, f"{base_path}/0", item)
        for item in reversed(added)
    ]


def update_annotations(
    target: Mapping[str, str] | None, added: Mapping[str, str]
) -> list[PatchOperation]:
    """
    An unset key is written as an `add` of a singleton map at the
    annotations path. The whole map is replaced on purpose: other
    annotations, the inject one included, are not carried over.
    """
    patch = []
    for key, value in added.items():
        if not target or not target.get(key):
            patch.append(PatchOperation(PatchOp.ADD, ANNOTATIONS_PATH, {key: value}))
        else:
            path = f"{ANNOTATIONS_PATH}/{escape_pointer_token(key)}"
            patch.append(PatchOperation(PatchOp.REPLACE, path, value))
    return patch


def set_container_env(
    container: ContainerSpec,
    container_index: int,
    added_env: Sequence[Mapping[str, Any]],
    base_path: str,
) -> list[PatchOperation]:
    return _add_items(
        container.env, added_env, f"{base_path}/{container_index}/env"
    )


def mutate_container_core(
    container: ContainerSpec, container_index: int, base_path: str
) -> list[PatchOperation]:
    """
    Mounts the shared volume and wraps the container command with `op run`,
    so secrets are resolved before the main process starts.
    """
    if not container.command:
        raise MutationError(
            f"not attaching OP to the container {container.name}: "
            "the podspec does not define a command"
        )

    command = [TOOL_PATH, "run", "--", *container.command]
    volume_mounts = [*container.volume_mounts, dict(BIN_VOLUME_MOUNT)]

    container_path = f"{base_path}/{container_index}"
    return [
        PatchOperation(PatchOp.ADD, f"{container_path}/volumeMounts", volume_mounts),
        PatchOperation(PatchOp.REPLACE, f"{container_path}/command", command),
    ]
