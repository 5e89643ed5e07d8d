# -*- coding: utf-8 -*-
from typing import Any, Dict, Optional


class FrameKitError(Exception):
    """Base class for every error raised by the conversion engine."""
    kind: str = "internal"

    def __init__(self, message: str, file_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.file_name = file_name

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'kind': self.kind, 'error': self.message}
        if self.file_name is not None:
            payload['fileName'] = self.file_name
        return payload


class InputValidationError(FrameKitError):
    """Malformed manifest, unmatched or duplicate file names, limits exceeded."""
    kind = "input_validation"


class UnreadableImageError(FrameKitError):
    """A source image could not be decoded."""
    kind = "unreadable_image"


class ToolUnavailableError(FrameKitError):
    """A required external capability (quantizer binary, detection model) is missing."""
    kind = "tool_unavailable"


class ToolFailureError(FrameKitError):
    """The external capability was found but failed or timed out."""
    kind = "tool_failure"


class StreamingFailureError(FrameKitError):
    """The output sink failed after bytes started flowing."""
    kind = "streaming_failure"


class ArchiveError(FrameKitError):
    kind = "archive"


class DuplicateEntryError(ArchiveError):
    pass


class ArchiveClosedError(ArchiveError):
    pass


class BatchFailedError(FrameKitError):
    """
    Raised when a batch aborts. Carries the name of the first failing source;
    the underlying error is chained as __cause__ and exposed as `cause`.
    """

    def __init__(self, file_name: str, cause: BaseException):
        super().__init__(f"{file_name}: {cause}", file_name=file_name)
        self.cause = cause
        self.kind = cause.kind if isinstance(cause, FrameKitError) else "internal"
