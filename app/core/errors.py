"""Domain errors raised by services; app.main maps them to HTTP responses."""


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(DomainError):
    status_code = 400


class SessionFullError(ValidationFailed):
    pass


class AccessDenied(DomainError):
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, kind: str, current: str, new: str):
        super().__init__(f"Illegal {kind} status transition: {current} -> {new}")
        self.kind = kind
        self.current = current
        self.new = new


class NotConfigured(DomainError):
    status_code = 503
