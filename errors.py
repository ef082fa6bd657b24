# errors.py
# Failure taxonomy shared by the attempt lifecycle and the blueprints.


class ExamPortalError(Exception):
    """Base class; status_code is the HTTP status a view should answer with."""
    status_code = 500
    public_message = "Something went wrong."

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.public_message)
        self.context = context


class Unauthenticated(ExamPortalError):
    status_code = 401
    public_message = "Please sign in to continue."


class AlreadyAttempted(ExamPortalError):
    status_code = 409
    public_message = "You have already attempted this exam."


class NotFound(ExamPortalError):
    status_code = 404
    public_message = "Exam not found."


class PersistenceFailure(ExamPortalError):
    """Store unreachable, timed out, or rejected a write. Retryable."""
    status_code = 503
    public_message = "We could not reach the exam store. Please try again."


class ValidationFailure(ExamPortalError):
    status_code = 400
    public_message = "The submitted data is not valid."


__all__ = [
    "ExamPortalError",
    "Unauthenticated",
    "AlreadyAttempted",
    "NotFound",
    "PersistenceFailure",
    "ValidationFailure",
]
