"""Exception hierarchy shared by every prcli package.

Errors that carry a ``comment`` have a user-facing message ready to be posted
on the pull request. ``CommentedError`` marks an error whose message has
already been posted, so the executor must not post a generic one on top.
"""

from __future__ import annotations


class PRCliError(Exception):
    """Base class for all prcli errors."""

    def __init__(self, message: str, comment: str | None = None):
        super().__init__(message)
        self.comment = comment


class ConfigError(PRCliError):
    """Invalid or incomplete configuration."""


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class ParseError(PRCliError):
    """A comment could not be turned into a command."""


class NoCommandError(ParseError):
    pass


class UnknownCommandError(ParseError):
    def __init__(self, name: str):
        super().__init__(f"unknown command: {name}")
        self.name = name


class EmptyMultiCommandError(ParseError):
    def __init__(self):
        super().__init__("no valid commands found in multi-line comment")


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


class ValidationError(PRCliError):
    """A validator rejected the command before any handler ran."""


class PRNotOpenError(ValidationError):
    pass


class SenderMismatchError(ValidationError):
    pass


class PermissionDeniedError(ValidationError):
    pass


class SelfApprovalError(ValidationError):
    pass


# ---------------------------------------------------------------------------
# Handlers and platform calls
# ---------------------------------------------------------------------------


class PlatformError(PRCliError):
    """A call to the code-hosting platform failed.

    ``transient`` is True for rate limits, timeouts and 5xx responses.
    """

    def __init__(self, message: str, transient: bool = False, status: int | None = None):
        super().__init__(message)
        self.transient = transient
        self.status = status


class MergeNotAllowedError(PRCliError):
    pass


class CherryPickError(PRCliError):
    pass


class CommentedError(PRCliError):
    """Wraps an error whose user-visible message was already posted."""

    def __init__(self, cause: BaseException):
        super().__init__(str(cause))
        self.__cause__ = cause


class CommentPostError(PRCliError):
    """A command failed and posting its error comment failed as well."""


def is_commented(exc: BaseException | None) -> bool:
    """Return True if ``exc`` or anything in its cause chain is a CommentedError."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, CommentedError):
            return True
        seen.add(id(exc))
        exc = exc.__cause__
    return False


# ---------------------------------------------------------------------------
# Webhook ingress
# ---------------------------------------------------------------------------


class EventError(PRCliError):
    """A webhook payload cannot become a canonical event (HTTP 400)."""


class UnsupportedEventError(EventError):
    pass


class NotAPullRequestError(EventError):
    def __init__(self):
        super().__init__("comment is not on a pull request")


class ActionNotAllowedError(EventError):
    pass


class MalformedPayloadError(EventError):
    pass


class SkippedEventError(EventError):
    """A well-formed event that is deliberately not processed (pings, drafts)."""


def is_service_failure(exc: BaseException | None) -> bool:
    """True when ``exc`` points at the service rather than the user.

    Transient platform errors and failed error comments qualify; everything
    else was already explained on the pull request.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, CommentPostError):
            return True
        if isinstance(exc, PlatformError) and exc.transient:
            return True
        seen.add(id(exc))
        exc = exc.__cause__
    return False
