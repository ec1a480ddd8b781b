"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class MalformedPayloadError(DomainException):
    """Webhook payload is missing a required field or is not valid JSON"""

    pass


class DuplicateTransactionError(DomainException):
    """Transaction ID has already been stored"""

    pass


class TransactionFetchError(DomainException):
    """Up API returned an error or is unavailable"""

    pass


class InferenceError(DomainException):
    """Classifier could not produce a prediction for a feature vector"""

    pass


class ModelLoadError(DomainException):
    """Persisted model bundle is missing, unreadable or incompatible"""

    pass


class InvalidTrainingDataError(DomainException):
    """Training examples are malformed"""

    pass


class DeadlineExceededError(DomainException):
    """Webhook processing ran past its time budget"""

    pass


class AlertDeliveryError(DomainException):
    """Alert webhook could not be delivered after all retries"""

    pass
