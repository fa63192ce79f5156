"""Error taxonomy shared by the credential service, stores and relay.

Every error carries a user-facing ``message`` and the HTTP ``status_code``
used when it surfaces through the REST API. The relay maps the same errors
onto WebSocket close codes or ``error`` events instead.
"""


class ChatFlowError(Exception):
    """Base exception for all ChatFlow errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ChatFlowError):
    """Missing, malformed, expired or signature-invalid credential."""
    def __init__(self, message: str = "Authentication error"):
        super().__init__(message, status_code=401)


class ValidationError(ChatFlowError):
    """Caller supplied input that fails a field constraint."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class InvalidCredentialsError(ChatFlowError):
    """Unknown email or wrong password.

    Both cases share one message so the response never reveals which
    field was wrong.
    """
    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message, status_code=401)


class ConflictError(ChatFlowError):
    """Registration collides with an existing account."""
    def __init__(self, message: str):
        # The public API reports conflicts as plain 400s
        super().__init__(message, status_code=400)


class PersistenceError(ChatFlowError):
    """The backing store could not complete a read or write."""
    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message, status_code=500)
