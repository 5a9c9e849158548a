"""Custom Exceptions for the Dubline application."""

from typing import Optional


class DublineError(Exception):
    """Base class for exceptions in this module."""

    # Client errors are caused by the request (unknown id, invalid edit);
    # everything else is a failure on our side or in a collaborator.
    is_client_error = False

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


class ConfigurationError(DublineError):
    """Exception raised for errors in configuration loading."""
    pass


class NotFoundError(DublineError):
    """An operation referenced an unknown project or segment."""
    is_client_error = True


class ProjectNotFoundError(NotFoundError):
    """Exception raised when a session id has no live project."""
    pass


class SegmentNotFoundError(NotFoundError):
    """Exception raised when a segment id is not in the timeline."""
    pass


class ValidationError(DublineError):
    """Exception raised for structurally invalid requests."""
    is_client_error = True


class MergeOrderError(ValidationError):
    """Exception raised when merge target and successor are not adjacent."""
    pass


class CollaboratorError(DublineError):
    """Exception raised when an external service or tool fails."""
    pass


class TranscriptionError(CollaboratorError):
    """Exception raised for errors during transcription."""
    pass


class TranslationError(CollaboratorError):
    """Exception raised for errors during translation."""
    pass


class SynthesisError(CollaboratorError):
    """Exception raised for errors during speech synthesis."""
    pass


class TranscodeError(CollaboratorError):
    """Exception raised when ffmpeg or ffprobe fails."""
    pass


class FileSystemError(DublineError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass
