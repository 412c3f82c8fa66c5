# viberr/errors.py


class ViberrError(Exception):
    """
    Base for every failure that ends a request with a JSON `{"error": ...}` body.

    `public_message` is what the caller sees; anything else (upstream bodies,
    stack traces) stays in the server log.
    """

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, public_message: str | None = None):
        if public_message:
            self.public_message = public_message
        super().__init__(self.public_message)


class ClientInputError(ViberrError):
    status_code = 400

    def __init__(self, public_message: str):
        super().__init__(public_message)


class ConfigurationError(ViberrError):
    status_code = 500

    def __init__(self, public_message: str = "API key not configured"):
        super().__init__(public_message)


class UpstreamFailure(ViberrError):
    status_code = 502
    public_message = "AI request failed"


class UpstreamUnavailable(UpstreamFailure):
    """The provider could not be reached (DNS, connect, read timeout...)."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__()


class UpstreamRejected(UpstreamFailure):
    """The provider answered with a non-success status."""

    def __init__(self, status_code: int, body: str = ""):
        self.upstream_status = status_code
        self.body = body
        super().__init__()

    def __str__(self) -> str:
        return f"upstream rejected request: status={self.upstream_status}"
