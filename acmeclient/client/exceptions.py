import copy
import typing

ERROR_PREFIX = "urn:ietf:params:acme:error:"


class AcmeClientException(Exception):
    """General ACME client exception."""

    pass


class AcmeError(AcmeClientException):
    """Base class of the typed ACME error taxonomy.

    Carries the ACME error type (e.g. *urn:ietf:params:acme:error:badNonce*), the human readable detail
    and the HTTP status code of the response that caused the error, if any.
    """

    DEFAULT_TYPE = "operationFailed"
    DEFAULT_STATUS: typing.Optional[int] = None

    def __init__(
        self,
        message: str = "",
        *,
        error_type: str = None,
        detail: str = None,
        status: int = None,
        raw: typing.Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type: str = error_type or self.DEFAULT_TYPE
        """The ACME error type as sent by the server."""
        self.detail: typing.Optional[str] = detail
        """The error detail as sent by the server."""
        self.status: typing.Optional[int] = status if status is not None else self.DEFAULT_STATUS
        """The HTTP status code."""
        self.raw = raw
        """The raw error payload, usually the decoded problem document."""

    @property
    def code(self) -> str:
        """The error type without the ACME URN prefix, e.g. *badNonce*."""
        if self.error_type.startswith(ERROR_PREFIX):
            return self.error_type[len(ERROR_PREFIX):]
        return self.error_type

    def with_context(self, context: str) -> "AcmeError":
        """Returns a copy of the error whose message is prefixed with the given operation context.

        The class and all ACME fields are kept, so callers can still dispatch on the error type.

        :param context: Description of the operation that failed.
        :return: The wrapped error.
        """
        wrapped = copy.copy(self)
        wrapped.message = f"{context}: {self.message}"
        wrapped.args = (wrapped.message,)
        return wrapped

    def __str__(self):
        return self.message


class ValidationError(AcmeError):
    """The request was rejected as malformed or unauthorized (HTTP 400/403)."""

    DEFAULT_TYPE = "malformed"
    DEFAULT_STATUS = 400


class RateLimitError(AcmeError):
    """The server rate limited the request (HTTP 429)."""

    DEFAULT_TYPE = "rateLimited"
    DEFAULT_STATUS = 429

    def __init__(self, message: str = "", *, retry_after: float = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        """Seconds the server asked the client to wait, if it sent a *Retry-After* header."""


class ServerError(AcmeError):
    """The server failed to process the request (HTTP 5xx)."""

    DEFAULT_TYPE = "serverInternal"
    DEFAULT_STATUS = 500


class ClientError(AcmeError):
    """Generic error, also used for local precondition failures such as a missing key or URL."""

    pass


class CouldNotCompleteChallenge(AcmeClientException):
    """Exception that is raised if completion of a specific challenge failed."""

    def __init__(self, challenge, *args):
        super().__init__(*args)
        self.challenge: "acmeclient.models.Challenge" = challenge
        """The challenge whose completion was unsuccessful."""

    def __str__(self):
        return f"Could not complete challenge: {self.challenge.url} ({self.challenge.error})"


class PollingException(AcmeClientException):
    """Exception that is used to communicate polling timeouts or errors."""

    def __init__(self, obj, *args):
        super().__init__(*args)
        self.obj = obj


def error_for_status(status: int) -> typing.Type[AcmeError]:
    """Maps an HTTP status code to the matching error class.

    :param status: The HTTP status code.
    :return: The error class.
    """
    if status == 429:
        return RateLimitError
    if status in (400, 403):
        return ValidationError
    if 500 <= status < 600:
        return ServerError
    return ClientError
