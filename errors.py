"""
Error types shared by the workflows and the HTTP layer.

Every error is rendered to the client as {"error": message, "code": code}
with the status code of its class. Clients branch on `code`, never on the
message text.
"""


class AppError(Exception):
    status_code = 500
    code = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class Conflict(AppError):
    status_code = 400
    code = "conflict"


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class Internal(AppError):
    status_code = 500
    code = "internal"


ERRORS_BY_CODE = {cls.code: cls for cls in (Unauthorized, NotFound, Conflict, ValidationError, Internal)}
CODES_BY_STATUS = {400: ValidationError.code, 401: Unauthorized.code, 404: NotFound.code}
