from gitmate.clients.errors.base import ClientError, ExtraInfoType


class RequestError(ClientError):
    """A request error from the GitHub repository reader."""

    def __init__(self, action: str, message: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(message="A request error occurred.", extra_info={"action": action, "message": message, **extra_info})


class RateLimitedError(RequestError):
    """GitHub refused the request, usually because the anonymous rate limit was exceeded."""

    def __init__(self, action: str, resource: str | None = None):
        super().__init__(
            action=action,
            message="Rate limit exceeded. Add a GitHub Token in settings.",
            extra_info={"resource": resource},
        )


class ResourceNotFoundError(RequestError):
    """A not found error from the GitHub repository reader."""

    def __init__(self, action: str, resource: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(
            action=action,
            message="Repository or path not found.",
            extra_info={"resource": resource, **extra_info},
        )


class UnavailableError(RequestError):
    """Any other failure talking to GitHub."""

    def __init__(self, action: str, resource: str | None = None, status_code: int | None = None):
        super().__init__(
            action=action,
            message="Failed to fetch repository contents.",
            extra_info={"resource": resource, "status_code": str(status_code) if status_code is not None else None},
        )
