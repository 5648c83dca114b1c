class FleetDeskError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(FleetDeskError):
    status_code = 400
    code = "invalid_request"


class NotFound(FleetDeskError):
    status_code = 404
    code = "not_found"


class StorageError(FleetDeskError):
    """The record store could not complete the operation. Nothing was applied."""
    status_code = 500
    code = "storage_error"
