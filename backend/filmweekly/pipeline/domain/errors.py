"""Exceptions raised by the submission pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline failures."""


class InvalidTaskError(PipelineError):
    """Queue message that cannot be decoded into a known task; dropped, never retried."""


class ThumbnailConversionError(PipelineError):
    """Source bytes could not be decoded or re-encoded."""

    def __init__(self, message: str, *, width: int | None = None, height: int | None = None) -> None:
        super().__init__(message)
        self.width = width
        self.height = height


class ModerationTransportError(PipelineError):
    """The moderation endpoint could not be reached or timed out."""


class ModerationHttpError(PipelineError):
    """The moderation endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str | None = None) -> None:
        super().__init__(f"moderation endpoint returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class ModerationResponseError(PipelineError):
    """The moderation endpoint answered 2xx with a body that is not a verdict."""

    def __init__(self, message: str, body: str | None = None) -> None:
        super().__init__(message)
        self.body = body
