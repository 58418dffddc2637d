"""Structured errors surfaced to callable clients.

Every failure a callable reports carries one code from a fixed taxonomy
plus a human-readable message. The callables blueprint renders them as
``{"error": {"code": ..., "message": ...}}`` with the matching HTTP status.
"""

HTTP_STATUS_BY_CODE = {
    "invalid-argument": 400,
    "failed-precondition": 400,
    "unauthenticated": 401,
    "permission-denied": 403,
    "not-found": 404,
    "resource-exhausted": 429,
    "internal": 500,
}


class CallableError(Exception):
    """An error reported verbatim to the calling client."""

    def __init__(self, code, message):
        if code not in HTTP_STATUS_BY_CODE:
            raise ValueError(f"Unknown callable error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def http_status(self):
        return HTTP_STATUS_BY_CODE[self.code]

    def to_dict(self):
        return {"code": self.code, "message": self.message}

    def __repr__(self):
        return f"<CallableError {self.code}: {self.message}>"


class TransactionContention(Exception):
    """A read-modify-write kept colliding with concurrent writers."""
