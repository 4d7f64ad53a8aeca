from __future__ import annotations
from typing import Optional


class MedtrackError(Exception):
    """
    Base class of every failure a service operation reports to its caller.

    `kind` is the stable name clients switch on; `status_code` is what the
    HTTP layer answers with. The message is always safe to show to a user.
    """
    kind = "MedtrackError"
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidCredentials(MedtrackError):
    kind = "InvalidCredentials"
    status_code = 401
    default_message = "Incorrect name or password."


class UnknownIdentity(InvalidCredentials):
    kind = "UnknownIdentity"
    status_code = 404
    default_message = "Patient not found, please register first."


class InvalidToken(MedtrackError):
    kind = "InvalidToken"
    status_code = 401
    default_message = "Token is invalid or expired."


class SessionNotFound(MedtrackError):
    kind = "SessionNotFound"
    status_code = 401
    default_message = "Session not found or no longer active."


class SessionExpired(MedtrackError):
    kind = "SessionExpired"
    status_code = 401
    default_message = "Session has expired."


class Forbidden(MedtrackError):
    kind = "Forbidden"
    status_code = 403
    default_message = "You are not allowed to do this."


class UserNotFound(MedtrackError):
    kind = "UserNotFound"
    status_code = 404
    default_message = "Patient not found."


class MedicineNotFound(MedtrackError):
    kind = "MedicineNotFound"
    status_code = 404
    default_message = "Medicine not found."


class InsufficientStock(MedtrackError):
    kind = "InsufficientStock"
    status_code = 409
    default_message = "Not enough medicine stock."


class ReminderNotFound(MedtrackError):
    kind = "ReminderNotFound"
    status_code = 404
    default_message = "Reminder not found."


class DuplicateIdentity(MedtrackError):
    kind = "DuplicateIdentity"
    status_code = 409
    default_message = "Name or phone number is already registered."


class MissingRequiredField(MedtrackError):
    kind = "MissingRequiredField"
    status_code = 400
    default_message = "Required field is missing."


class InvalidField(MedtrackError):
    kind = "InvalidField"
    status_code = 400
    default_message = "Field value is invalid."


class ReferenceConflict(MedtrackError):
    kind = "ReferenceConflict"
    status_code = 409
    default_message = "Record is still referenced by other data."


class TooManyRequests(MedtrackError):
    kind = "TooManyRequests"
    status_code = 429
    default_message = "Too many requests from this IP, please try again later."


class PersistenceFailure(MedtrackError):
    kind = "PersistenceFailure"
    status_code = 500
    default_message = "Something went wrong, please try again."
