class SchemaGateException(Exception):
    """Base exception for the tenant routing service"""

    pass


class UnauthorizedException(SchemaGateException):
    """Raised when the caller cannot be identified"""

    pass


class NotFoundException(SchemaGateException):
    """Raised when resource not found"""

    pass


class ForbiddenException(SchemaGateException):
    """Raised when the caller is identified but not allowed"""

    pass


class ValidationException(SchemaGateException):
    """Raised for business logic validation errors"""

    pass


class ConflictException(SchemaGateException):
    """Raised when a request conflicts with the current state of a resource"""

    pass


class TenantResolutionError(SchemaGateException):
    """Base class for failures to determine the acting tenant"""

    pass


class TenantIdentityMalformed(TenantResolutionError, UnauthorizedException):
    """Raised when the tenant identifier is missing or cannot be parsed"""

    pass


class TenantNotFound(TenantResolutionError, UnauthorizedException):
    """Raised when no live tenant matches the identifier"""

    pass


class TenantInactive(TenantResolutionError, ForbiddenException):
    """Raised when the tenant exists but has been deactivated"""

    pass


class SchemaProvisioningFailed(SchemaGateException):
    """
    Raised when a tenant schema cannot be created or migrated.

    Fatal for the onboarding operation that triggered it; the caller
    must remove the tenant row it just inserted.
    """

    def __init__(self, schema_name: str, reason: str):
        self.schema_name = schema_name
        self.reason = reason
        super().__init__(f"Provisioning of schema '{schema_name}' failed: {reason}")


class SyncOperationFailed(SchemaGateException):
    """
    Raised by external sync clients.

    Never surfaced to HTTP callers; recorded by the integration error
    tracker and retried when `retryable` is set. `attempted` is False when
    the call never reached the external system, so no retry is charged.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        error_code: str | None = None,
        attempted: bool = True,
    ):
        self.retryable = retryable
        self.error_code = error_code
        self.attempted = attempted
        super().__init__(message)


class RetryRejected(ConflictException):
    """Raised when the error state machine refuses a retry request"""

    pass
