"""Exceptions raised by the Reppy client."""


class ApiError(Exception):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __repr__(self):
        return f"{type(self).__name__}({self.status_code}, {self.message!r})"


class AuthError(ApiError):
    """401 or 403."""


class NotFoundError(ApiError):
    pass


class ConflictError(ApiError):
    """409: duplicate rows or writes to a locked workout."""


class LimitError(ApiError):
    """422: a value or count limit was exceeded."""


class OfflineError(Exception):
    """The server could not be reached."""


_BY_STATUS = {
    401: AuthError,
    403: AuthError,
    404: NotFoundError,
    409: ConflictError,
    422: LimitError,
}


def error_for(status_code: int, message: str) -> ApiError:
    return _BY_STATUS.get(status_code, ApiError)(status_code, message)
