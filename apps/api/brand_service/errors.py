from __future__ import annotations


class BrandServiceError(Exception):
    """Base class for every error raised deliberately by the service."""


class NotFoundError(BrandServiceError, LookupError):
    pass


class InvalidUrlError(BrandServiceError, ValueError):
    pass


class BrandNotReadyError(BrandServiceError):
    """The brand exists but lacks what an extraction needs (a URL)."""


class UpstreamError(BrandServiceError):
    """Site-map, scrape or LLM call failed or produced nothing usable."""


class ExtractionParseError(UpstreamError):
    pass


class TrackingError(BrandServiceError):
    pass


class RunsServiceError(TrackingError):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class InvalidJobTransition(BrandServiceError):
    pass
