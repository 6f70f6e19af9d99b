"""Exceptions shared across the relay."""


class RelayError(Exception):
    """Base exception for relay errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MessagePersistenceError(RelayError):
    """Raised when the message store cannot persist or read records."""
    def __init__(self, message: str, operation: str = "create"):
        self.operation = operation
        super().__init__(f"Message store {operation} failed: {message}")


class AttachmentWriteError(RelayError):
    """Raised when an attachment cannot be decoded or written to disk."""
    def __init__(self, message: str, filename: str):
        self.filename = filename
        super().__init__(f"Attachment {filename} not stored: {message}")
