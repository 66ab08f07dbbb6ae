# credit_block_job/exceptions.py

class DestinationError(Exception):
    """Destination missing from the environment or not usable."""


class BackendError(Exception):
    """
    Raised when a call to the S/4HANA backend fails and we want the log line
    to carry the service and response details, not just the transport error.
    """
    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        http_status: int | None = None,
        error_message: str | None = None,
        raw_response_text: str | None = None,
    ):
        super().__init__(message)
        self.service = service
        self.http_status = http_status
        self.error_message = error_message
        self.raw_response_text = raw_response_text

    def __str__(self) -> str:
        base = super().__str__()
        parts = []
        if self.service:
            parts.append(f"service={self.service}")
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        if self.error_message:
            parts.append(f"error={self.error_message}")
        return f"{base} ({', '.join(parts)})" if parts else base
