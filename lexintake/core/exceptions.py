"""
Domain exceptions raised by repositories and services.

The HTTP layer maps each of them to a status code in ``lexintake.main``.
"""


class LexIntakeError(Exception):
    """Base class for every error raised by the permissions service"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(LexIntakeError):
    """A backend is missing the credentials it needs"""


class NotFound(LexIntakeError):
    """A row required by the operation does not exist in the institution"""


class UserNotFound(NotFound):
    def __init__(self, message: str = "user not found in permissions base"):
        super().__init__(message)


class Unauthorized(LexIntakeError):
    def __init__(self, message: str = "only the sysadmin can perform this action"):
        super().__init__(message)


class DuplicateEmail(LexIntakeError):
    def __init__(self, message: str = "a user with this email already exists in this institution"):
        super().__init__(message)


class BackendUnavailable(LexIntakeError):
    """The primary backend failed; only ever logged, never surfaced"""

    def __init__(self, domain: str, operation: str, reason: str):
        super().__init__(f"{domain}.{operation} unavailable: {reason}")
        self.domain = domain
        self.operation = operation
        self.reason = reason
