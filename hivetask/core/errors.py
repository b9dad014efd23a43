"""
HiveTask — Error taxonomy and mutation results.

Container operations never raise to their callers. They return a
MutationResult carrying either the confirmed value or one of the errors
below, and map each error to a distinct user-visible message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class WorkspaceError(Exception):
    """Base class for every failure a container reports."""

    user_message = "Something went wrong. Please try again."


class Unauthenticated(WorkspaceError):
    user_message = "You need to sign in first."


class NotFound(WorkspaceError):
    user_message = "We couldn't find that."


class InvalidInviteCode(NotFound):
    user_message = "Invalid invite code. Please check the code and try again."


class InvalidInput(WorkspaceError):
    user_message = "Please fill in the required fields."


class Conflict(WorkspaceError):
    user_message = "That change conflicts with the current state."


class AlreadyMember(Conflict):
    user_message = "You are already a member of this group."


class NotPermitted(WorkspaceError):
    user_message = "Only the group admin can do that."


class TransientFailure(WorkspaceError):
    """A remote read or write failed; the local change was reverted."""

    user_message = "Couldn't reach the server. Your change was not saved."


def describe_error(error: Exception | None) -> str:
    """Return the user-facing message for an error."""
    if isinstance(error, WorkspaceError):
        return error.user_message
    return WorkspaceError.user_message


@dataclass
class MutationResult(Generic[T]):
    """Outcome of a container operation: the confirmed value or an error."""

    value: T | None = None
    error: WorkspaceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return "" if self.error is None else describe_error(self.error)

    @classmethod
    def success(cls, value: T | None = None) -> MutationResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: WorkspaceError) -> MutationResult[T]:
        return cls(error=error)
