from typing import Optional

M_FORBIDDEN = "M_FORBIDDEN"
M_USER_IN_USE = "M_USER_IN_USE"
M_NOT_FOUND = "M_NOT_FOUND"
M_UNKNOWN = "M_UNKNOWN"


class MatrixRequestError(Exception):
    """Error response returned by the homeserver."""

    def __init__(self, status: int, errcode: str = M_UNKNOWN, message: Optional[str] = None) -> None:
        self.status = status
        self.errcode = errcode
        self.message = message or ""
        super().__init__(f"{status} {errcode}: {self.message}")


def has_errcode(err: BaseException, errcode: str) -> bool:
    return isinstance(err, MatrixRequestError) and err.errcode == errcode
