"""Exception taxonomy shared by the chat core.

Each error is confined to the connection (or HTTP request) that triggered it.
Nothing here is retried by the server; reconnect and resend belong to clients.
"""


class ParleyError(Exception):
    """Base exception for chat core errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthRejectedError(ParleyError):
    """Raised when a connection presents no token or an invalid one."""
    def __init__(self, message: str = "unauthorized"):
        super().__init__(message)


class MalformedRequestError(ParleyError):
    """Raised for client input that cannot be acted on (e.g. a bad message id)."""


class MessageNotFoundError(MalformedRequestError):
    """Raised when a well-formed message id does not exist in the store."""
    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message {message_id} not found")


class PersistenceError(ParleyError):
    """Raised when the message store backend fails."""


class DuplicateBindingError(ParleyError):
    """Raised when a connection is bound a second time to a different identity."""
    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id} is already bound")


class UploadTooLargeError(ParleyError):
    """Raised when an attachment is over the configured size limit."""
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"File size ({size} bytes) exceeds limit ({limit} bytes)")
