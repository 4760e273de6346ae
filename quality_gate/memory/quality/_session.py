"""Mutable regeneration session state, owned by a single controller."""

import logging

from pydantic import BaseModel, Field, PrivateAttr

from quality_gate.utils.exceptions import SessionStateError

from ._config import RegenerationConfig
from ._models import Attempt, ContentKind, SessionStatus

logger = logging.getLogger(__name__)

_ABORT_STATUSES = frozenset(
    {SessionStatus.TIMED_OUT, SessionStatus.ORACLE_FAILURE, SessionStatus.CANCELLED}
)

# Allowed transitions; timeouts, oracle failure and cancellation may end any live state
_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.SCORING, SessionStatus.DECIDING})
    | _ABORT_STATUSES,
    SessionStatus.SCORING: frozenset({SessionStatus.DECIDING}) | _ABORT_STATUSES,
    SessionStatus.DECIDING: frozenset(
        {
            SessionStatus.ACCEPTED,
            SessionStatus.REGENERATING,
            SessionStatus.EXHAUSTED_ATTEMPTS,
        }
    )
    | _ABORT_STATUSES,
    SessionStatus.REGENERATING: frozenset({SessionStatus.SCORING, SessionStatus.DECIDING})
    | _ABORT_STATUSES,
}


class RegenerationSession(BaseModel):
    """Attempts and status for one content unit.

    Transitions are checked against a fixed table and a session can be
    closed exactly once, on a terminal status.
    """

    content_id: str
    kind: ContentKind
    config: RegenerationConfig
    status: SessionStatus = SessionStatus.PENDING
    attempts: list[Attempt] = Field(default_factory=list)

    _closed: bool = PrivateAttr(default=False)

    @property
    def closed(self) -> bool:
        """True once a terminal status has been reached."""
        return self._closed

    @property
    def next_attempt_number(self) -> int:
        """1-indexed number of the attempt about to run."""
        return len(self.attempts) + 1

    @property
    def threshold(self) -> float:
        """Acceptance threshold for this session's kind."""
        return self.config.threshold_for(self.kind)

    def transition(self, new_status: SessionStatus) -> None:
        """Move to ``new_status``; a terminal status closes the session.

        Raises:
            SessionStateError: If the transition is not allowed.
        """
        if self._closed:
            raise SessionStateError(
                f"Session {self.content_id} already closed as {self.status}, "
                f"cannot move to {new_status}"
            )
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise SessionStateError(
                f"Invalid transition for session {self.content_id}: {self.status} -> {new_status}"
            )
        logger.debug("Session %s: %s -> %s", self.content_id, self.status, new_status)
        self.status = new_status
        if new_status.is_terminal:
            self._closed = True

    def record(self, attempt: Attempt) -> None:
        """Append a finished attempt.

        Raises:
            SessionStateError: If the session is closed or the number is out of sequence.
        """
        if self._closed:
            raise SessionStateError(f"Session {self.content_id} is closed")
        if attempt.attempt_number != self.next_attempt_number:
            raise SessionStateError(
                f"Attempt {attempt.attempt_number} out of sequence "
                f"(expected {self.next_attempt_number})"
            )
        self.attempts.append(attempt)

    def scored_attempts(self) -> list[Attempt]:
        """Attempts that carry metrics."""
        return [a for a in self.attempts if a.metrics is not None]

    def best_attempt(self) -> Attempt | None:
        """Highest overall score, ties broken by the lowest attempt number."""
        scored = self.scored_attempts()
        if not scored:
            return None
        return min(scored, key=lambda a: (-a.metrics.overall_score, a.attempt_number))  # type: ignore[union-attr]

    def best_score(self) -> float | None:
        """Overall score of the best attempt so far."""
        best = self.best_attempt()
        return best.overall_score if best is not None else None
