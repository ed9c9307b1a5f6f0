class ContentException(Exception):
    """Base exception for the application"""
    pass


class AuthenticationError(ContentException):
    """Authentication related errors"""
    pass


class AuthorizationError(ContentException):
    """Authorization related errors"""
    pass


class ValidationError(ContentException):
    """Validation related errors"""
    pass


class InvalidOperationError(ContentException):
    """Operation is not allowed in the current state"""
    pass


class NotFoundError(ContentException):
    """Resource not found errors"""
    pass


class ConflictError(ContentException):
    """Resource conflict errors"""
    pass


class FileOperationError(ContentException):
    """File storage or read errors"""
    pass
