from dataclasses import dataclass
from datetime import datetime

from faceattend.config.settings import DEFAULT_CUTOFF_TIME, MIN_CONFIDENCE_TO_LEARN
from faceattend.core.errors import ConfigurationError, RepositoryUnavailableError
from faceattend.core.types import (
    AttendanceDecision,
    AttendanceStatus,
    DecisionReason,
    MatchOutcome,
)
from faceattend.utils.logging import setup_logger

_NO_IDENTITY_REASONS = {
    MatchOutcome.NO_MATCH: DecisionReason.NO_MATCH,
    MatchOutcome.REPOSITORY_UNAVAILABLE: DecisionReason.REPOSITORY_UNAVAILABLE,
    MatchOutcome.INVALID_DESCRIPTOR: DecisionReason.INVALID_DESCRIPTOR,
}


@dataclass(frozen=True)
class CutoffTime:
    hour: int
    minute: int

    def __post_init__(self):
        if not (0 <= self.hour <= 23 and 0 <= self.minute <= 59):
            raise ConfigurationError(f"Invalid cutoff time {self.hour}:{self.minute}")

    @classmethod
    def parse(cls, value):
        """
        Parse "HH:MM".
        """
        try:
            hour_str, minute_str = str(value).split(":")
            return cls(int(hour_str), int(minute_str))
        except ValueError as e:
            raise ConfigurationError(f"Cutoff time must look like HH:MM, got {value!r}") from e

    def is_past(self, now):
        """
        True when `now` is strictly after the cutoff on the same day.
        """
        cutoff = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        return now > cutoff

    def __str__(self):
        return f"{self.hour:02d}:{self.minute:02d}"


class AttendanceDecisionOrchestrator:
    """
    Turns a match result and a liveness verdict into an attendance
    decision, and feeds accepted high-confidence captures back into the
    descriptor repository.
    """

    def __init__(self, repository=None, cutoff=None,
                 min_confidence_to_learn=MIN_CONFIDENCE_TO_LEARN,
                 reject_texture_spoof=False):
        self.repository = repository
        self.cutoff = cutoff or CutoffTime.parse(DEFAULT_CUTOFF_TIME)
        self.min_confidence_to_learn = min_confidence_to_learn
        self.reject_texture_spoof = reject_texture_spoof
        self.logger = setup_logger()

    def is_live(self, liveness_verdict):
        if liveness_verdict is None or not liveness_verdict.is_live:
            return False
        if self.reject_texture_spoof and liveness_verdict.texture is not None:
            return not liveness_verdict.texture.spoof_suspected
        return True

    def decide(self, match_result, liveness_verdict, now=None, cutoff=None, track_id=None):
        now = now or datetime.now()
        cutoff = cutoff or self.cutoff

        if match_result.identity_id is None:
            reason = _NO_IDENTITY_REASONS.get(match_result.outcome, DecisionReason.NO_MATCH)
            return AttendanceDecision(
                identity_id=None,
                status=AttendanceStatus.UNAUTHORIZED,
                reason=reason,
                confidence=0.0,
                liveness=liveness_verdict,
                timestamp=now,
                track_id=track_id,
            )

        if not self.is_live(liveness_verdict):
            self.logger.warning(
                f"Spoof suspected for {match_result.identity_id} "
                f"(match confidence {match_result.confidence:.2f})"
            )
            return AttendanceDecision(
                identity_id=match_result.identity_id,
                status=AttendanceStatus.UNAUTHORIZED,
                reason=DecisionReason.SPOOF_SUSPECTED,
                confidence=match_result.confidence,
                liveness=liveness_verdict,
                timestamp=now,
                track_id=track_id,
            )

        status = AttendanceStatus.LATE if cutoff.is_past(now) else AttendanceStatus.PRESENT
        decision = AttendanceDecision(
            identity_id=match_result.identity_id,
            status=status,
            reason=DecisionReason.ACCEPTED,
            confidence=match_result.confidence,
            liveness=liveness_verdict,
            timestamp=now,
            track_id=track_id,
        )
        self.logger.info(
            f"Attendance {status.value} for {decision.identity_id} "
            f"(confidence {decision.confidence:.2f}, cutoff {cutoff})"
        )

        self._learn(match_result)
        return decision

    def _learn(self, match_result):
        if self.repository is None or match_result.descriptor is None:
            return False
        if match_result.confidence < self.min_confidence_to_learn:
            return False
        try:
            return self.repository.learn(
                match_result.identity_id, match_result.descriptor, match_result.confidence
            )
        except RepositoryUnavailableError as e:
            # The decision stands; only the reinforcement sample is lost
            self.logger.error(f"Failed to learn descriptor for {match_result.identity_id}: {e}")
            return False
