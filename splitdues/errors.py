from typing import Any, Dict, Optional


class SplitDuesError(Exception):
    """Base error; ``code`` is what clients see in the ``error`` field."""

    status = 500
    code = "internal_error"

    def __init__(self, code: Optional[str] = None, detail: Optional[str] = None) -> None:
        if code is not None:
            self.code = code
        self.detail = detail
        super().__init__(detail or self.code)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code}
        if self.detail:
            body["detail"] = self.detail
        return body


class AuthenticationError(SplitDuesError):
    status = 401
    code = "authentication_required"


class ForbiddenError(SplitDuesError):
    status = 403
    code = "not_authorized"


class ValidationError(SplitDuesError):
    status = 400
    code = "invalid_request"


class DataIntegrityError(SplitDuesError):
    # A stored record references something that does not exist.
    status = 500
    code = "data_integrity_error"
