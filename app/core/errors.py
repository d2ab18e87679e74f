"""Exceptions shared by the account stores, the registration workflow and the API."""


class DentariaError(Exception):
    """Base class; carries a human-readable message like the service errors do."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DuplicateEmailError(DentariaError):
    """Raised by the account store when the unique email constraint rejects an insert."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("The email has already been taken.")


class ConfigurationError(DentariaError):
    """Deployment invariant broken (e.g. default role missing). Not user-correctable."""


class DeliveryTransientError(DentariaError):
    """Notification could not be handed to the mail relay (timeout, 5xx, connection error)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DeliveryRejectedError(DentariaError):
    """Mail relay refused the message (4xx other than 429). Retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AuditWriteFailure(DentariaError):
    """Audit entry could not be written. Best-effort; never surfaced to end users."""


class InvalidConfirmationTokenError(DentariaError):
    """Confirmation token unknown, expired or already consumed."""

    def __init__(self, message: str = "Invalid or expired confirmation token.") -> None:
        super().__init__(message)
