from typing import Optional


class BlingError(RuntimeError):
    """Base class for every failure raised by the Bling ingestion layer."""


class BlingCredentialError(BlingError):
    """No usable access token for an account (never connected, or refresh failed)."""

    def __init__(self, message: str, *, account: Optional[int] = None):
        super().__init__(message)
        self.account = account


class BlingRetryExhaustedError(BlingError):
    """Raised when 429/5xx (or transport) failures outlast the retry schedule."""

    def __init__(self, last_status: Optional[int], attempts: int, detail: str = ""):
        status_text = str(last_status) if last_status is not None else "no response"
        message = f"Bling API error {status_text} after {attempts} attempts"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.last_status = last_status
        self.attempts = attempts


class BlingHttpError(BlingError):
    """Non-retryable upstream response (4xx other than 429)."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Bling API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body
