class DeskError(Exception):
    """Raised by the desk service; the API turns it into {"error": message}."""

    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(DeskError):
    status_code = 400


class Unauthorized(DeskError):
    status_code = 401


class NotFound(DeskError):
    status_code = 404


class Conflict(DeskError):
    status_code = 409


class Unprocessable(DeskError):
    status_code = 422
