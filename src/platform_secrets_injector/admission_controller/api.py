import json
import logging
from typing import Any

from aiohttp import hdrs, web

from platform_secrets_injector.admission_controller.app_keys import MUTATOR_KEY
from platform_secrets_injector.admission_controller.eligibility import decide
from platform_secrets_injector.admission_controller.mutator import ContainerMutator
from platform_secrets_injector.admission_controller.schema import (
    AdmissionRequest,
    AdmissionReview,
    AdmissionReviewResponse,
    extract_uid,
)
from platform_secrets_injector.errors import AdmissionControllerError, DecodeError


logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class ApiHandler:
    def register(self, app: web.Application) -> None:
        app.add_routes((web.get("/ping", self.handle_ping),))

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response()


class AdmissionControllerApi:
    def __init__(
        self,
        app: web.Application,
    ) -> None:
        self._app = app

    @property
    def _mutator(self) -> ContainerMutator:
        return self._app[MUTATOR_KEY]

    def register(self, app: web.Application) -> None:
        app.add_routes(
            [
                web.post("/inject", self.handle_post_inject),
            ]
        )

    async def handle_post_inject(self, request: web.Request) -> web.Response:
        body = await request.read()
        if not body:
            logger.error("empty body")
            raise web.HTTPBadRequest(text="empty body")

        # the control plane always sends exactly this content type
        content_type = request.headers.get(hdrs.CONTENT_TYPE, "")
        if content_type != JSON_CONTENT_TYPE:
            logger.error("Content-Type=%s, expect %s", content_type, JSON_CONTENT_TYPE)
            raise web.HTTPUnsupportedMediaType(
                text=f"invalid Content-Type, expect `{JSON_CONTENT_TYPE}`"
            )

        review = await self.review(body)

        try:
            text = json.dumps(review)
        except (TypeError, ValueError) as e:
            logger.exception("Can't encode response")
            raise web.HTTPInternalServerError(
                text=f"could not encode response: {e}"
            ) from e
        logger.info("Ready to write response ...")
        return web.Response(text=text, content_type=JSON_CONTENT_TYPE)

    async def review(self, body: bytes) -> dict[str, Any]:
        """
        Turns a raw admission review into the review to respond with.
        Request-level failures are reported inside the review.
        """
        try:
            admission_review = AdmissionReview.from_body(body)
        except DecodeError as e:
            logger.error("Can't decode body: %s", e.message)
            return AdmissionReviewResponse(uid=extract_uid(body)).fail(e.message)

        request = admission_review.request
        if request is None:
            message = "admission review does not carry a request"
            logger.error(message)
            return AdmissionReviewResponse().fail(message)

        admission_review_response = AdmissionReviewResponse(uid=request.uid)
        try:
            # enrichment of `admission_review_response` happens inside
            await self._mutate(request, admission_review_response)
        except AdmissionControllerError as e:
            logger.error(
                "Error occurred mutating pod for secret injection: %s", e.message
            )
            return admission_review_response.fail(e.message)
        except Exception:
            logger.exception("secrets injector unhandled error")
            return admission_review_response.fail("secrets injector unhandled error")
        return admission_review_response.allow()

    async def _mutate(
        self,
        request: AdmissionRequest,
        admission_review_response: AdmissionReviewResponse,
    ) -> None:
        workload = request.workload()
        metadata = workload.metadata
        logger.info(
            "Checking if secret injection is needed for %s %s at namespace %s",
            request.kind.kind,
            metadata.name,
            request.namespace,
        )

        decision = decide(metadata)
        if not decision.required:
            logger.info(
                "Secret injection not required for %s at namespace %s",
                metadata.name,
                request.namespace,
            )
            return

        namespace = request.namespace or metadata.namespace
        result = await self._mutator.mutate(workload, decision, namespace)
        if not result.mutated:
            logger.info(
                "No containers set for secret injection for %s/%s",
                namespace,
                metadata.name,
            )
            return

        admission_review_response.patch = [op.to_primitive() for op in result.patch]
        logger.info(
            "AdmissionResponse: patch=%s", json.dumps(admission_review_response.patch)
        )
