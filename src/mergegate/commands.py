"""
Reviewer commands embedded in merge-request comments.

A reviewer approves with ``@<bot> r+`` (optionally ``@<bot> r+ p=3`` to
raise queue priority) and withdraws approval with ``@<bot> r-``.

The bot name and the priority used when ``p=N`` is missing or malformed
come from Settings unless passed explicitly.
"""

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Callable, Collection, Iterable, Optional, Union

from pydantic import BaseModel, Field

from mergegate.config import Settings
from mergegate.states import Approval, ProposalEvent

logger = logging.getLogger(__name__)

# Usernames allowed to review, or a predicate over the author's username
Reviewers = Union[Collection[str], Callable[[str], bool]]

_PRIORITY = re.compile(r"p=([0-9]+)")


class CommandKind(str, Enum):
    APPROVE = "r+"
    CANCEL = "r-"


class ReviewCommand(BaseModel):
    """A parsed reviewer command."""

    kind: CommandKind
    priority: int = Field(default=0, ge=0)

    def to_event(self) -> ProposalEvent:
        """Lifecycle event this command feeds into the engine."""
        if self.kind == CommandKind.APPROVE:
            return ProposalEvent.REVIEW_APPROVED
        return ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED


class ReviewComment(BaseModel):
    """A comment as delivered by the hosting system."""

    author: str = Field(..., description="Username of the commenter")
    body: str = Field(..., description="Comment text")
    created_at: datetime = Field(..., description="When the comment was posted")


def _parse_priority(word: Optional[str], default: int) -> int:
    # Unsigned decimal only; anything else keeps the default
    match = _PRIORITY.fullmatch(word) if word is not None else None
    if match is None:
        return default
    return int(match.group(1))


def _resolve(
    bot_username: Optional[str],
    default_priority: Optional[int],
    settings: Optional[Settings],
) -> tuple[str, int]:
    if bot_username is None or default_priority is None:
        settings = settings or Settings.from_env()
        if bot_username is None:
            bot_username = settings.bot_username
        if default_priority is None:
            default_priority = settings.default_priority
    return bot_username, default_priority


def parse_command(
    text: str,
    bot_username: Optional[str] = None,
    default_priority: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> Optional[ReviewCommand]:
    """
    Parse the command addressed to ``@bot_username`` in a comment.

    Only the word right after the first mention counts. Returns None when
    the bot is not mentioned or the word is not a known command.
    """
    bot_username, default_priority = _resolve(bot_username, default_priority, settings)
    mention = f"@{bot_username}"
    words = text.split()

    try:
        start = words.index(mention) + 1
    except ValueError:
        return None

    rest = words[start:]
    if not rest:
        return None

    if rest[0] == CommandKind.APPROVE.value:
        following = rest[1] if len(rest) > 1 else None
        return ReviewCommand(kind=CommandKind.APPROVE, priority=_parse_priority(following, default_priority))
    if rest[0] == CommandKind.CANCEL.value:
        return ReviewCommand(kind=CommandKind.CANCEL)
    return None


def parse_comments(
    comments: Iterable[ReviewComment],
    reviewers: Reviewers,
    bot_username: Optional[str] = None,
    default_priority: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> Optional[Approval]:
    """
    Replay reviewer comments in order and return the resulting approval.

    Comments whose author is not a reviewer are skipped. Among the rest
    the last command wins: ``r+`` records an approval by the comment's
    author at the comment's time, ``r-`` clears it.

    Args:
        comments: Comments in posting order
        reviewers: Allowed usernames, or a predicate taking a username
        bot_username: Name the commands must mention; Settings when None
        default_priority: Priority for ``r+`` without ``p=N``; Settings when None
        settings: Settings to read the defaults from instead of the environment
    """
    bot_username, default_priority = _resolve(bot_username, default_priority, settings)
    is_reviewer = reviewers if callable(reviewers) else reviewers.__contains__
    approval: Optional[Approval] = None

    for comment in comments:
        command = parse_command(comment.body, bot_username, default_priority)
        if command is None:
            continue
        if not is_reviewer(comment.author):
            logger.debug(f"[mergegate] ignoring {command.kind.value} from non-reviewer {comment.author}")
            continue

        if command.kind == CommandKind.APPROVE:
            approval = Approval(priority=command.priority, time=comment.created_at, username=comment.author)
        else:
            approval = None
        logger.debug(f"[mergegate] {comment.author}: {command.kind.value}")

    return approval
