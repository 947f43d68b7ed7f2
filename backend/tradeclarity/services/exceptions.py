# backend/tradeclarity/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
main.py maps each family to an HTTP response.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── CsvParseError
    ├── NotFoundError
    │   ├── ConnectionNotFoundError
    │   ├── CsvUploadNotFoundError
    │   └── SnaptradeUserNotFoundError
    ├── PersistenceError
    │   ├── TradeFetchError
    │   ├── TradePersistenceError
    │   └── CacheSaveError
    ├── ExternalServiceError
    │   ├── RateProviderError
    │   ├── ColumnDetectionError
    │   │   └── AINotConfiguredError
    │   └── SnaptradeError
    │       ├── SnaptradeNotConfiguredError
    │       └── SnaptradeUserExistsError
    ├── EncryptionNotConfiguredError
    └── AuthenticationError
        ├── InvalidTokenError
        └── TokenExpiredError
"""


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-stable error code surfaced in API responses
    """

    code: str = "SERVICE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when programmatic input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, code: str | None = None) -> None:
        self.field = field
        super().__init__(message, code=code)


class CsvParseError(ValidationError):
    """
    Raised when an uploaded CSV cannot be turned into trades.

    The code is one of EMPTY_FILE, MALFORMED_CSV, INVALID_MAPPING,
    INVALID_FORMAT or UNSUPPORTED_EXCHANGE.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, field="file", code=code)


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "ExchangeConnection")
        resource_id: Identifier of the resource
    """

    code = "NOT_FOUND"

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class ConnectionNotFoundError(NotFoundError):
    """Raised when an exchange connection does not exist for the user."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        super().__init__(
            f"Exchange connection {connection_id} not found",
            resource_type="ExchangeConnection",
            resource_id=connection_id,
        )


class CsvUploadNotFoundError(NotFoundError):
    """Raised when a CSV upload does not exist for the user."""

    def __init__(self, upload_id: str) -> None:
        self.upload_id = upload_id
        super().__init__(
            f"CSV upload {upload_id} not found",
            resource_type="CsvUpload",
            resource_id=upload_id,
        )


class SnaptradeUserNotFoundError(NotFoundError):
    """Raised when a user has not registered with the brokerage aggregator."""

    code = "SNAPTRADE_USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            "User not registered with SnapTrade. Please register first.",
            resource_type="SnaptradeUser",
            resource_id=user_id,
        )


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class PersistenceError(ServiceError):
    """
    Base exception for database read/write failures that must not be swallowed.

    Attributes:
        db_error: Underlying database error text (operator debugging only)
    """

    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, db_error: str | None = None) -> None:
        self.db_error = db_error
        super().__init__(message)


class TradeFetchError(PersistenceError):
    """Raised when a user's trades cannot be loaded."""

    code = "FAILED_TO_FETCH_TRADES"


class TradePersistenceError(PersistenceError):
    """Raised when a batch of trades cannot be written."""

    code = "FAILED_TO_STORE_TRADES"


class CacheSaveError(PersistenceError):
    """Raised when recomputed analytics cannot be written to the cache table."""

    code = "FAILED_TO_SAVE_CACHE"


# =============================================================================
# EXTERNAL SERVICE ERRORS
# =============================================================================


class ExternalServiceError(ServiceError):
    """
    Base exception for failures of third-party services.

    Attributes:
        service: Name of the upstream service
    """

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(message)


class RateProviderError(ExternalServiceError):
    """Raised by a currency rate provider that cannot supply a usable rate set."""

    code = "RATE_PROVIDER_ERROR"


class ColumnDetectionError(ExternalServiceError):
    """Raised when the completion API fails to produce a column mapping."""

    code = "COLUMN_DETECTION_FAILED"

    def __init__(self, message: str) -> None:
        super().__init__("ai", message)


class AINotConfiguredError(ColumnDetectionError):
    """Raised when column detection is requested without API credentials."""

    code = "AI_NOT_CONFIGURED"

    def __init__(self) -> None:
        super().__init__("AI service not configured. Set ANTHROPIC_API_KEY.")


class SnaptradeError(ExternalServiceError):
    """
    Raised when the brokerage aggregator rejects a request.

    Attributes:
        status_code: Upstream HTTP status, if any
    """

    code = "SNAPTRADE_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__("snaptrade", message)


class SnaptradeNotConfiguredError(SnaptradeError):
    code = "SNAPTRADE_NOT_CONFIGURED"

    def __init__(self) -> None:
        super().__init__(
            "SnapTrade credentials not configured. "
            "Set SNAPTRADE_CLIENT_ID, SNAPTRADE_CONSUMER_KEY and ENCRYPTION_KEY."
        )


class SnaptradeUserExistsError(SnaptradeError):
    """Raised when the aggregator already knows the user but we hold no row for it."""

    code = "SNAPTRADE_USER_EXISTS"

    def __init__(self, snaptrade_user_id: str) -> None:
        self.snaptrade_user_id = snaptrade_user_id
        super().__init__("User already registered with SnapTrade", status_code=409)


class EncryptionNotConfiguredError(ServiceError):
    """Raised when credentials must be stored but ENCRYPTION_KEY is not set."""

    code = "ENCRYPTION_NOT_CONFIGURED"

    def __init__(self) -> None:
        super().__init__("Credential encryption not configured. Set ENCRYPTION_KEY.")


# =============================================================================
# AUTHENTICATION ERRORS
# =============================================================================


class AuthenticationError(ServiceError):
    """Base exception for bearer token failures."""

    code = "UNAUTHORIZED"


class InvalidTokenError(AuthenticationError):
    """Raised when a bearer token is malformed or its signature is invalid."""


class TokenExpiredError(AuthenticationError):
    """Raised when a bearer token has expired."""

    code = "TOKEN_EXPIRED"
