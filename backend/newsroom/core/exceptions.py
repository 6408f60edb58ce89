"""Exception types raised by the generation pipeline and storage layer."""


class NewsroomError(Exception):
    """Base class for all domain errors."""


class GenerationError(NewsroomError):
    """The language model call failed, timed out or returned an invalid payload."""


class NoArticlesInWindowError(NewsroomError):
    """No articles were generated inside the edition window."""


class NoEditionsInWindowError(NewsroomError):
    """No newspaper editions were generated inside the daily window."""


class EditorNotConfiguredError(NewsroomError):
    """The tenant has no editor configuration."""


class NotFoundError(NewsroomError):
    """A write targeted an entity that does not exist."""


class DuplicateEmailError(NewsroomError):
    """A user with this email address already exists."""

    def __init__(self, email: str):
        super().__init__(f"A user with email {email} already exists")
        self.email = email
