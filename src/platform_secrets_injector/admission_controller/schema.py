import base64
import dataclasses
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from platform_secrets_injector.errors import DecodeError

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"


class EnvVar(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str


class ContainerSpec(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    command: list[str] = Field(default_factory=list)
    env: list[EnvVar] = Field(default_factory=list)
    volume_mounts: list[dict[str, Any]] = Field(
        default_factory=list, alias="volumeMounts"
    )

    @field_validator("command", "env", "volume_mounts", mode="before")
    @classmethod
    def null_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def has_env(self, name: str) -> bool:
        return any(env.name == name for env in self.env)


class ObjectMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    namespace: str = ""
    annotations: dict[str, str] = Field(default_factory=dict)

    @field_validator("name", "namespace", mode="before")
    @classmethod
    def null_as_empty_str(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("annotations", mode="before")
    @classmethod
    def null_as_empty_dict(cls, value: Any) -> Any:
        return {} if value is None else value


class WorkloadSpec(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    init_containers: list[ContainerSpec] = Field(
        default_factory=list, alias="initContainers"
    )
    containers: list[ContainerSpec] = Field(default_factory=list)
    volumes: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("init_containers", "containers", "volumes", mode="before")
    @classmethod
    def null_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value


class Workload(BaseModel):
    """
    The subset of a pod the injector reads.
    Never written back directly, only expressed as a patch.
    """

    model_config = ConfigDict(extra="allow")

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: WorkloadSpec = Field(default_factory=WorkloadSpec)

    @field_validator("metadata", "spec", mode="before")
    @classmethod
    def null_as_default(cls, value: Any) -> Any:
        return {} if value is None else value


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str = ""


class AdmissionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uid: str = ""
    namespace: str = ""
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    object: dict[str, Any] | None = None

    def workload(self) -> Workload:
        if not self.object:
            raise DecodeError("admission request does not carry an object")
        try:
            return Workload.model_validate(self.object)
        except ValidationError as e:
            raise DecodeError(f"could not decode object: {e}") from e


class AdmissionReview(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api_version: str = Field(default="", alias="apiVersion")
    kind: str = ""
    request: AdmissionRequest | None = None

    @classmethod
    def from_body(cls, body: bytes) -> "AdmissionReview":
        try:
            return cls.model_validate_json(body)
        except ValidationError as e:
            raise DecodeError(f"could not decode body: {e}") from e


def extract_uid(body: bytes) -> str | None:
    """
    Best-effort lookup of the request UID in a body
    that failed to decode as an admission review.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    request = payload.get("request")
    if not isinstance(request, dict):
        return None
    uid = request.get("uid")
    return uid if isinstance(uid, str) else None


class AdmissionReviewPatchType(str, Enum):
    JSON = "JSONPatch"


@dataclasses.dataclass
class AdmissionReviewResponse:
    uid: str | None = None
    patch: list[dict[str, Any]] | None = None

    def _review(self, response: dict[str, Any]) -> dict[str, Any]:
        if self.uid is not None:
            response = {"uid": self.uid, **response}
        return {
            "apiVersion": ADMISSION_API_VERSION,
            "kind": ADMISSION_KIND,
            "response": response,
        }

    def allow(self) -> dict[str, Any]:
        response: dict[str, Any] = {"allowed": True}
        if self.patch is not None:
            # the patch travels as base64-encoded JSON
            dumped = json.dumps(self.patch).encode()
            response.update(
                {
                    "patch": base64.b64encode(dumped).decode(),
                    "patchType": AdmissionReviewPatchType.JSON.value,
                }
            )
        return self._review(response)

    def fail(self, message: str) -> dict[str, Any]:
        return self._review({"allowed": False, "status": {"message": message}})
