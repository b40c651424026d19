"""
Service-level errors rendered as sanitized JSON by main.py
"""
from http import HTTPStatus


class ServiceError(Exception):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Something went wrong"):
        super().__init__(message)
        self.message = message

    @property
    def reason(self) -> str:
        return HTTPStatus(self.status_code).phrase

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message}


class BadRequestError(ServiceError):
    status_code = HTTPStatus.BAD_REQUEST


class ForbiddenError(ServiceError):
    status_code = HTTPStatus.FORBIDDEN


class NotFoundError(ServiceError):
    status_code = HTTPStatus.NOT_FOUND


class InternalError(ServiceError):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
