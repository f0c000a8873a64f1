class SecretsInjectorError(Exception):
    """Base secrets injector error"""


class ConfigurationError(SecretsInjectorError):
    """The process can not start serving with the provided configuration"""


class WebhookConfigError(SecretsInjectorError):
    """Unable to register the webhook with the cluster"""


class AdmissionControllerError(SecretsInjectorError):
    """
    Base per-request error.
    Reported back to the caller inside a well-formed admission review.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(AdmissionControllerError):
    """Unable to decode an admission review or the object it carries"""


class MutationError(AdmissionControllerError):
    """Unable to mutate"""
