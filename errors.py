"""Service-level errors. main.py maps each one to an HTTP status code."""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(ServiceError):
    status_code = 404


class InvalidRequestError(ServiceError):
    status_code = 400


class ForbiddenError(ServiceError):
    status_code = 403


class ServiceUnavailableError(ServiceError):
    status_code = 500
