import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from faceattend.config.settings import (
    BLINKS_REQUIRED,
    CHALLENGE_DURATIONS_MS,
    EAR_CLOSED_THRESHOLD,
    EAR_OPEN_THRESHOLD,
    HEAD_TURN_RATIO,
    NOD_MIN_STEP,
    SMILE_MEAN_THRESHOLD,
    SMILE_PEAK_THRESHOLD,
)
from faceattend.core.errors import ChallengeStateError, ConfigurationError
from faceattend.utils.logging import setup_logger


class ChallengeType(str, Enum):
    BLINK = "blink"
    TURN_LEFT = "turnLeft"
    TURN_RIGHT = "turnRight"
    SMILE = "smile"
    NOD = "nod"


INSTRUCTIONS = {
    ChallengeType.BLINK: "Blink twice",
    ChallengeType.TURN_LEFT: "Turn your head left",
    ChallengeType.TURN_RIGHT: "Turn your head right",
    ChallengeType.SMILE: "Smile",
    ChallengeType.NOD: "Nod your head",
}


class VerifierState(str, Enum):
    IDLE = "idle"
    CHALLENGE_ISSUED = "challenge_issued"
    COLLECTING = "collecting"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass
class Challenge:
    challenge_type: ChallengeType
    instruction: str
    started_at: float
    duration_ms: int
    frames: List[Any] = field(default_factory=list)
    detections: List[Any] = field(default_factory=list)
    expressions: List[Dict[str, float]] = field(default_factory=list)

    def expires_at(self):
        return self.started_at + self.duration_ms / 1000.0


@dataclass(frozen=True)
class ChallengeResult:
    challenge_type: ChallengeType
    verified: bool
    confidence: float
    details: str
    measurements: Dict[str, float] = field(default_factory=dict)


def _insufficient(challenge_type, what):
    return ChallengeResult(challenge_type, False, 0.0, f"Insufficient {what}")


def eye_aspect_ratio(eye_points):
    """
    Compute Eye Aspect Ratio (EAR) from six eye points.
    """
    eye_points = np.asarray(eye_points, dtype=np.float64)
    if len(eye_points) < 6:
        return 0.0
    A = np.linalg.norm(eye_points[1] - eye_points[5])
    B = np.linalg.norm(eye_points[2] - eye_points[4])
    C = np.linalg.norm(eye_points[0] - eye_points[3])
    if C == 0:
        return 0.0
    return float((A + B) / (2.0 * C))


def face_eye_aspect_ratio(landmarks):
    """
    Mean EAR of both eyes, or None when the eyes were not reported.
    """
    if landmarks is None or landmarks.left_eye is None or landmarks.right_eye is None:
        return None
    return (eye_aspect_ratio(landmarks.left_eye) + eye_aspect_ratio(landmarks.right_eye)) / 2.0


def _nose_tips(detections):
    tips = []
    for detection in detections:
        landmarks = getattr(detection, "landmarks", None)
        if landmarks is not None and landmarks.nose_tip is not None:
            tips.append((detection, landmarks.nose_tip))
    return tips


def verify_blink_challenge(ear_values, closed_threshold=EAR_CLOSED_THRESHOLD,
                           open_threshold=EAR_OPEN_THRESHOLD, blinks_required=BLINKS_REQUIRED):
    """
    A blink is the EAR dropping below closed_threshold and then recovering
    above open_threshold. The first value only sets the baseline.
    """
    ear_values = [v for v in ear_values if v is not None]
    if len(ear_values) < 3:
        return _insufficient(ChallengeType.BLINK, "frames")

    blink_count = 0
    was_open = True
    for ear in ear_values[1:]:
        if was_open and ear < closed_threshold:
            was_open = False
        elif not was_open and ear > open_threshold:
            was_open = True
            blink_count += 1

    return ChallengeResult(
        ChallengeType.BLINK,
        verified=blink_count >= blinks_required,
        confidence=min(blink_count / blinks_required, 1.0),
        details=f"Detected {blink_count} blinks (required: {blinks_required})",
        measurements={"blink_count": blink_count},
    )


def verify_head_turn_challenge(detections, direction, min_ratio=HEAD_TURN_RATIO):
    """
    Peak nose-tip displacement from the first frame, normalised by face
    width, must exceed min_ratio and end up on the requested side.
    """
    challenge_type = ChallengeType.TURN_LEFT if direction == "left" else ChallengeType.TURN_RIGHT
    tips = _nose_tips(detections)
    if len(detections) < 2 or len(tips) < 2:
        return _insufficient(challenge_type, "detections")

    initial_x = tips[0][1][0]
    max_turn = 0.0
    for detection, (x, _) in tips[1:]:
        face_width = detection.bounding_box.width
        max_turn = max(max_turn, abs(x - initial_x) / face_width)

    actual_direction = "left" if tips[-1][1][0] < initial_x else "right"
    verified = max_turn > min_ratio and actual_direction == direction

    return ChallengeResult(
        challenge_type,
        verified=verified,
        confidence=min(max_turn / 0.2, 1.0),
        details=f"Turn detected: {max_turn * 100:.1f}% {actual_direction} (required: {min_ratio * 100:.0f}% {direction})",
        measurements={"max_turn": max_turn},
    )


def verify_smile_challenge(expressions, peak_threshold=SMILE_PEAK_THRESHOLD,
                           mean_threshold=SMILE_MEAN_THRESHOLD):
    expressions = [e for e in expressions if e is not None]
    if len(expressions) < 2:
        return _insufficient(ChallengeType.SMILE, "expressions")

    happiness = [float(e.get("happy", 0.0)) for e in expressions]
    max_happiness = max(happiness)
    avg_happiness = sum(happiness) / len(happiness)

    return ChallengeResult(
        ChallengeType.SMILE,
        verified=max_happiness > peak_threshold and avg_happiness > mean_threshold,
        confidence=min(max_happiness, 1.0),
        details=f"Happiness detected: {max_happiness * 100:.1f}% (required: {peak_threshold * 100:.0f}%)",
        measurements={"max_happiness": max_happiness, "avg_happiness": avg_happiness},
    )


def verify_nod_challenge(detections, min_step=NOD_MIN_STEP):
    """
    A nod is a reversal of vertical nose-tip movement. Steps no larger
    than min_step are treated as noise.
    """
    tips = _nose_tips(detections)
    if len(detections) < 3 or len(tips) < 3:
        return _insufficient(ChallengeType.NOD, "detections")

    nod_count = 0
    direction = 0  # 1 = down, -1 = up
    for (_, prev), (_, curr) in zip(tips, tips[1:]):
        movement = curr[1] - prev[1]
        if abs(movement) > min_step:
            new_direction = 1 if movement > 0 else -1
            if direction != 0 and direction != new_direction:
                nod_count += 1
            direction = new_direction

    return ChallengeResult(
        ChallengeType.NOD,
        verified=nod_count >= 1,
        confidence=float(min(nod_count, 1)),
        details=f"Nod movements detected: {nod_count} (required: 1)",
        measurements={"nod_count": nod_count},
    )


def verify_challenge(challenge, frames=None, detections=None, expressions=None):
    """
    Score the buffers collected for one challenge.
    """
    detections = detections if detections is not None else challenge.detections
    expressions = expressions if expressions is not None else challenge.expressions
    challenge_type = ChallengeType(challenge.challenge_type)

    if challenge_type is ChallengeType.BLINK:
        ears = [face_eye_aspect_ratio(getattr(d, "landmarks", None)) for d in detections]
        return verify_blink_challenge(ears)
    if challenge_type is ChallengeType.TURN_LEFT:
        return verify_head_turn_challenge(detections, "left")
    if challenge_type is ChallengeType.TURN_RIGHT:
        return verify_head_turn_challenge(detections, "right")
    if challenge_type is ChallengeType.SMILE:
        return verify_smile_challenge(expressions)
    return verify_nod_challenge(detections)


class LivenessVerifier:
    """
    Handles randomised liveness challenges.
    Prevents pre-recorded video replay attacks by requiring
    real-time responses to random instructions.

    idle -> challenge_issued -> collecting -> verified | failed
    """

    def __init__(self, challenge_types=None, sequence=None, durations_ms=None,
                 rng=None, clock=None):
        self.logger = setup_logger()
        self.challenge_types = [ChallengeType(t) for t in (challenge_types or list(ChallengeType))]
        if not self.challenge_types:
            raise ConfigurationError("At least one challenge type is required")

        self.sequence = [ChallengeType(t) for t in sequence] if sequence else None
        if self.sequence is not None and not 1 <= len(self.sequence) <= 2:
            raise ConfigurationError(f"A challenge sequence holds 1 or 2 challenges, got {len(self.sequence)}")

        self.durations_ms = dict(CHALLENGE_DURATIONS_MS)
        if durations_ms:
            self.durations_ms.update({ChallengeType(k).value: v for k, v in durations_ms.items()})

        self.rng = rng or random.Random()
        self.clock = clock or time.monotonic
        self.state = VerifierState.IDLE
        self.current_challenge = None
        self.last_result = None
        self._sequence_index = 0

    def issue_challenge(self):
        """
        Start a new challenge: the next one of the configured sequence, or a
        random one.
        """
        if self.state in (VerifierState.CHALLENGE_ISSUED, VerifierState.COLLECTING):
            raise ChallengeStateError("A challenge is already in progress")

        if self.sequence:
            challenge_type = self.sequence[self._sequence_index % len(self.sequence)]
            self._sequence_index += 1
        else:
            challenge_type = self.rng.choice(self.challenge_types)

        self.current_challenge = Challenge(
            challenge_type=challenge_type,
            instruction=INSTRUCTIONS[challenge_type],
            started_at=self.clock(),
            duration_ms=int(self.durations_ms[challenge_type.value]),
        )
        self.state = VerifierState.CHALLENGE_ISSUED
        self.last_result = None
        self.logger.info(f"Generated challenge: {challenge_type.value}")
        return self.current_challenge

    def issue_challenges(self, count=2):
        """
        Pick `count` distinct challenge types in random order without
        starting any of them.
        """
        pool = list(self.challenge_types)
        self.rng.shuffle(pool)
        return pool[:min(count, len(pool))]

    def is_expired(self):
        if self.current_challenge is None:
            return True
        return self.clock() >= self.current_challenge.expires_at()

    def get_remaining_time(self):
        """
        Seconds left in the collection window, 0 once it has closed.
        """
        if self.current_challenge is None:
            return 0
        return max(0.0, self.current_challenge.expires_at() - self.clock())

    def add_sample(self, frame=None, detection=None, expressions=None):
        """
        Buffer one observation. Returns False once the window has closed.
        """
        if self.state not in (VerifierState.CHALLENGE_ISSUED, VerifierState.COLLECTING):
            raise ChallengeStateError(f"Cannot collect samples in state {self.state.value}")
        if self.is_expired():
            return False

        challenge = self.current_challenge
        if frame is not None:
            challenge.frames.append(frame)
        if detection is not None:
            challenge.detections.append(detection)
        if expressions is None and detection is not None:
            expressions = getattr(detection, "expressions", None)
        if expressions is not None:
            challenge.expressions.append(expressions)
        self.state = VerifierState.COLLECTING
        return True

    def verify(self):
        """
        Score the collected window. Only allowed once the window has closed.
        """
        if self.state not in (VerifierState.CHALLENGE_ISSUED, VerifierState.COLLECTING):
            raise ChallengeStateError(f"No challenge to verify in state {self.state.value}")
        if not self.is_expired():
            raise ChallengeStateError(
                f"Challenge window still open for {self.get_remaining_time():.2f}s"
            )

        result = verify_challenge(self.current_challenge)
        self.state = VerifierState.VERIFIED if result.verified else VerifierState.FAILED
        self.last_result = result
        self.logger.info(
            f"Challenge {result.challenge_type.value}: verified={result.verified} ({result.details})"
        )
        self.current_challenge = None
        return result

    def abandon(self):
        """
        Drop any in-progress challenge without producing a result.
        """
        if self.current_challenge is not None:
            self.logger.info(f"Abandoned challenge: {self.current_challenge.challenge_type.value}")
        self.reset()

    def reset(self):
        self.current_challenge = None
        self.last_result = None
        self.state = VerifierState.IDLE
