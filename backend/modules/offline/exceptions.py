# backend/modules/offline/exceptions.py

from typing import Optional

WAKING_UP_MESSAGE = "Server is waking up, please retry shortly"


class NetworkUnavailable(Exception):
    """
    The backend could not be reached or answered with a transient gateway
    error. Safe to retry; never a statement about the request itself.
    """

    def __init__(
        self,
        message: str = WAKING_UP_MESSAGE,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ActionRejected(Exception):
    """The backend refused the request on a business rule. Retrying will not help."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code
        super().__init__(f"{status_code} {error_code or ''}: {detail}".strip())
