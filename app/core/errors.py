from __future__ import annotations


class ServiceError(ValueError):
    """Base for failures raised by the plot workflow."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ServiceError):
    status_code = 400


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class PlotBusy(Conflict):
    """The plot lock could not be acquired before the timeout."""
