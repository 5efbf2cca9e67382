"""Custom exceptions for the Matomo connector.

All exception classes carry enough context (offending formula text, failed
API method, pending requests) for the message to be shown to a user as-is.
"""


class MatomoConnectorError(Exception):
    """Base exception for all connector errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


# ==================== FORMULA TRANSLATION ====================


class FormulaError(MatomoConnectorError):
    """Base exception for formula translation failures.

    Attributes:
        formula: The complete formula being translated, when known
        node_text: Source text of the offending sub-expression, when known
    """

    def __init__(
        self,
        message: str,
        formula: str | None = None,
        node_text: str | None = None,
        details: str | None = None,
    ):
        self.formula = formula
        self.node_text = node_text
        super().__init__(message, details)


class FormulaParseError(FormulaError):
    """Raised when a formula is not syntactically valid.

    Attributes:
        position: Zero-based character offset where parsing stopped
    """

    def __init__(self, message: str, formula: str | None = None, position: int | None = None):
        self.position = position
        super().__init__(message, formula=formula)


class UnsupportedFormulaError(FormulaError):
    """Raised when a formula parses but uses a construct the host cannot express.

    Examples:
        - Array literals, assignments, function definitions
        - Accessors on anything other than ``$goals``
        - Functions outside the supported allow-list

    Attributes:
        node_kind: Expression tree node kind that was rejected
    """

    def __init__(
        self,
        message: str,
        node_kind: str | None = None,
        node_text: str | None = None,
        formula: str | None = None,
    ):
        self.node_kind = node_kind
        super().__init__(message, formula=formula, node_text=node_text)


# ==================== CONFIGURATION & CREDENTIALS ====================


class ConfigurationError(MatomoConnectorError):
    """Exception raised for configuration-related errors.

    Examples:
        - No Matomo base URL configured
        - Invalid JSON in config file
    """

    def __init__(
        self, message: str, config_file: str | None = None, field: str | None = None, details: str | None = None
    ):
        self.config_file = config_file
        self.field = field
        super().__init__(message, details)


class CredentialSourceError(MatomoConnectorError):
    """Exception raised when credential loading fails from every source.

    Attributes:
        source: Name of the credential source (e.g., "environment", "config_file", "all")
        reason: Why the credential loading failed
    """

    def __init__(self, message: str, source: str, reason: str | None = None, details: str | None = None):
        self.source = source
        self.reason = reason
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [f"[{self.source}] {self.message}"]
        if self.reason:
            parts.append(f"Reason: {self.reason}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


# ==================== API CLIENT ====================


class UserFacingError(MatomoConnectorError):
    """Error whose message is meant to be shown verbatim to the dashboard user."""


class QuotaExceededError(UserFacingError):
    """Raised when the outbound fetch capability reports its daily quota is used up."""


class UnexpectedError(MatomoConnectorError):
    """Fatal error raised by the API client that the user cannot fix themselves.

    Attributes:
        operation: Component that raised the error (e.g. "api client")
    """

    def __init__(self, message: str, operation: str = "api client", details: str | None = None):
        self.operation = operation
        super().__init__(message, details)


class RuntimeLimitExceeded(UnexpectedError):
    """Raised when the host runtime budget is exhausted between retry rounds.

    Attributes:
        pending_requests: Canonical query strings that were still unresolved
    """

    def __init__(self, message: str, pending_requests: list[str] | None = None):
        self.pending_requests = list(pending_requests or [])
        super().__init__(message)


class APIError(UnexpectedError):
    """Raised in strict mode when one or more API requests ended in an error.

    Attributes:
        method: API method of the failed request (single failure only)
        params: Parameters of the failed request (single failure only)
        failed_count: Number of failed requests in the batch
    """

    def __init__(
        self,
        message: str,
        method: str | None = None,
        params: dict[str, str] | None = None,
        failed_count: int = 1,
    ):
        self.method = method
        self.params = params
        self.failed_count = failed_count
        super().__init__(message)
