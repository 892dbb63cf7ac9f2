# Business rule failures. Every error carries the HTTP status the API answers with.

class VotingError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NotFound(VotingError):
    status_code = 404
    default_message = "Not found"


class Conflict(VotingError):
    status_code = 409
    default_message = "Conflict"


class InvalidState(VotingError):
    status_code = 400
    default_message = "Operation not allowed in the current election status"


class InvalidInput(VotingError):
    status_code = 400
    default_message = "Invalid input"


class Forbidden(VotingError):
    status_code = 403
    default_message = "Forbidden"


class Unauthorized(VotingError):
    status_code = 401
    default_message = "Not authorized"


class ServerError(VotingError):
    pass
