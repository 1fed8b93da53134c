"""Error taxonomy shared by the store, lifecycle engine, auth shim and AI client.

Every error maps to an HTTP status; `main.py` turns them into an alert banner
plus a JSON error body and leaves prior state untouched.
"""


class HaulError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(HaulError):
    """An operation referenced an id absent from the store."""

    status_code = 404
    code = "not_found"


class DuplicateUser(HaulError):
    status_code = 409
    code = "duplicate_user"


class InvalidTransition(HaulError):
    """The job's current status does not allow the requested transition."""

    status_code = 409
    code = "invalid_transition"


class VersionConflict(HaulError):
    status_code = 409
    code = "version_conflict"


class InvalidRequest(HaulError):
    status_code = 422
    code = "invalid_request"


class AuthFailed(HaulError):
    status_code = 401
    code = "auth_failed"


class Unavailable(HaulError):
    """External AI collaborator unreachable or unconfigured."""

    status_code = 503
    code = "unavailable"
