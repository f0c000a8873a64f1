"""
Registration of the injector with the cluster.

Runs once at startup. The process does not serve traffic
unless the registration is in place.
"""

import copy
import logging
from typing import Any

from platform_secrets_injector.errors import WebhookConfigError
from platform_secrets_injector.kube_service import KubeService

logger = logging.getLogger(__name__)

WEBHOOK_CONFIG_NAME = "secrets-injector-webhook-config"
WEBHOOK_NAME = "secrets-injector.1password.com"
WEBHOOK_INJECT_PATH = "/inject"

NAMESPACE_SELECTOR_LABELS = {"secrets-injection": "enabled"}


def create_webhook_configuration(
    ca_bundle: str, service_name: str, namespace: str
) -> dict[str, Any]:
    """
    The desired registration.
    `ca_bundle` is the base64-encoded PEM of the CA which signed
    the serving certificate.
    """
    return {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "MutatingWebhookConfiguration",
        "metadata": {"name": WEBHOOK_CONFIG_NAME},
        "webhooks": [
            {
                "name": WEBHOOK_NAME,
                "admissionReviewVersions": ["v1", "v1beta1"],
                "sideEffects": "None",
                "clientConfig": {
                    "caBundle": ca_bundle,
                    "service": {
                        "name": service_name,
                        "namespace": namespace,
                        "path": WEBHOOK_INJECT_PATH,
                    },
                },
                "rules": [
                    {
                        "operations": ["CREATE", "UPDATE"],
                        "apiGroups": [""],
                        "apiVersions": ["v1"],
                        "resources": ["pods"],
                    }
                ],
                "namespaceSelector": {
                    "matchLabels": dict(NAMESPACE_SELECTOR_LABELS),
                },
                # reject admission rather than silently skipping injection
                "failurePolicy": "Fail",
            }
        ],
    }


def _owned_fields(webhook_config: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Projects a registration onto the fields this service sets,
    ignoring server-side defaults and bookkeeping.
    """
    owned = []
    for webhook in webhook_config.get("webhooks") or []:
        client_config = webhook.get("clientConfig") or {}
        service = client_config.get("service") or {}
        namespace_selector = webhook.get("namespaceSelector") or {}
        owned.append(
            {
                "name": webhook.get("name"),
                "admissionReviewVersions": webhook.get("admissionReviewVersions"),
                "sideEffects": webhook.get("sideEffects"),
                "caBundle": client_config.get("caBundle"),
                "service": {
                    "name": service.get("name"),
                    "namespace": service.get("namespace"),
                    "path": service.get("path"),
                },
                "rules": [
                    {
                        "operations": rule.get("operations"),
                        "apiGroups": rule.get("apiGroups"),
                        "apiVersions": rule.get("apiVersions"),
                        "resources": rule.get("resources"),
                    }
                    for rule in webhook.get("rules") or []
                ],
                "matchLabels": namespace_selector.get("matchLabels") or {},
                "failurePolicy": webhook.get("failurePolicy"),
            }
        )
    return owned


def is_up_to_date(found: dict[str, Any], desired: dict[str, Any]) -> bool:
    return _owned_fields(found) == _owned_fields(desired)


class WebhookConfigReconciler:
    def __init__(self, kube_service: KubeService) -> None:
        self._kube = kube_service

    async def reconcile(
        self, ca_bundle: str, service_name: str, namespace: str
    ) -> dict[str, Any]:
        """
        Creates the registration, or updates it when it drifted
        from the desired state.
        """
        logger.info(
            "Creating or updating the mutatingwebhookconfiguration: %s",
            WEBHOOK_CONFIG_NAME,
        )
        desired = create_webhook_configuration(ca_bundle, service_name, namespace)

        try:
            found = await self._kube.get_mutating_webhook_configuration(
                WEBHOOK_CONFIG_NAME
            )
        except Exception as e:
            logger.warning(
                "Failed to check the mutatingwebhookconfiguration: %s",
                WEBHOOK_CONFIG_NAME,
            )
            raise WebhookConfigError(str(e)) from e

        if found is None:
            try:
                created = await self._kube.create_mutating_webhook_configuration(
                    desired
                )
            except Exception as e:
                logger.warning(
                    "Failed to create the mutatingwebhookconfiguration: %s",
                    WEBHOOK_CONFIG_NAME,
                )
                raise WebhookConfigError(str(e)) from e
            logger.info(
                "Created mutatingwebhookconfiguration: %s", WEBHOOK_CONFIG_NAME
            )
            return created

        if is_up_to_date(found, desired):
            logger.info(
                "The mutatingwebhookconfiguration: %s already exists and has no change",
                WEBHOOK_CONFIG_NAME,
            )
            return found

        update = copy.deepcopy(desired)
        resource_version = (found.get("metadata") or {}).get("resourceVersion")
        if resource_version is not None:
            update["metadata"]["resourceVersion"] = resource_version
        try:
            updated = await self._kube.update_mutating_webhook_configuration(update)
        except Exception as e:
            logger.warning(
                "Failed to update the mutatingwebhookconfiguration: %s",
                WEBHOOK_CONFIG_NAME,
            )
            raise WebhookConfigError(str(e)) from e
        logger.info("Updated the mutatingwebhookconfiguration: %s", WEBHOOK_CONFIG_NAME)
        return updated
