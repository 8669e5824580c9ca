"""
Records shared across the recognition pipeline.

Detector output is validated once, in Detection.from_record, so that the
matching, tracking and liveness code only ever sees well-formed values.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from faceattend.config.settings import DESCRIPTOR_LENGTH
from faceattend.core.errors import InvalidDetectionError
from faceattend.core.vector_math import to_descriptor


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_value(cls, value):
        """
        Accept {x, y, width, height} mappings or (x, y, w, h) sequences.
        """
        try:
            if isinstance(value, dict):
                box = cls(float(value["x"]), float(value["y"]),
                          float(value["width"]), float(value["height"]))
            else:
                x, y, w, h = value
                box = cls(float(x), float(y), float(w), float(h))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidDetectionError(f"Malformed bounding box: {value!r}") from e

        if not np.all(np.isfinite([box.x, box.y, box.width, box.height])):
            raise InvalidDetectionError(f"Bounding box has non-finite values: {value!r}")
        if box.width <= 0 or box.height <= 0:
            raise InvalidDetectionError(f"Bounding box must have positive size: {value!r}")
        return box

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union of two boxes."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        if right <= left or bottom <= top:
            return 0.0
        intersection = (right - left) * (bottom - top)
        return intersection / (self.area + other.area - intersection)

    def center_distance(self, other: "BoundingBox") -> float:
        (ax, ay), (bx, by) = self.center, other.center
        return float(np.hypot(ax - bx, ay - by))


def _points(value, name, count=None):
    try:
        points = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidDetectionError(f"Landmark '{name}' is not numeric") from e
    if points.ndim != 2 or points.shape[1] != 2:
        raise InvalidDetectionError(f"Landmark '{name}' must be a list of (x, y) points")
    if count is not None and points.shape[0] != count:
        raise InvalidDetectionError(f"Landmark '{name}' needs {count} points, got {points.shape[0]}")
    if not np.all(np.isfinite(points)):
        raise InvalidDetectionError(f"Landmark '{name}' has non-finite coordinates")
    return points


@dataclass(frozen=True)
class FaceLandmarks:
    """
    The landmark points the liveness checks use: six points per eye in the
    usual EAR order (corner, top, top, corner, bottom, bottom) and the nose tip.
    """
    left_eye: Optional[np.ndarray] = None
    right_eye: Optional[np.ndarray] = None
    nose_tip: Optional[Tuple[float, float]] = None

    @classmethod
    def from_value(cls, value):
        if value is None:
            return None
        if not isinstance(value, dict):
            raise InvalidDetectionError(f"Landmarks must be a mapping, got {type(value).__name__}")

        left_eye = right_eye = nose_tip = None
        if value.get("left_eye") is not None:
            left_eye = _points(value["left_eye"], "left_eye", 6)
        if value.get("right_eye") is not None:
            right_eye = _points(value["right_eye"], "right_eye", 6)
        if value.get("nose_tip") is not None:
            tip = _points([value["nose_tip"]], "nose_tip", 1)[0]
            nose_tip = (float(tip[0]), float(tip[1]))
        return cls(left_eye=left_eye, right_eye=right_eye, nose_tip=nose_tip)


@dataclass(frozen=True)
class Detection:
    """One face reported by the external detector for one frame."""
    bounding_box: BoundingBox
    descriptor: np.ndarray
    landmarks: Optional[FaceLandmarks] = None
    expressions: Optional[Dict[str, float]] = None
    score: Optional[float] = None

    @classmethod
    def from_record(cls, record, descriptor_length=DESCRIPTOR_LENGTH):
        if not isinstance(record, dict):
            raise InvalidDetectionError(f"Detection must be a mapping, got {type(record).__name__}")

        box_value = record.get("bounding_box", record.get("boundingBox"))
        if box_value is None:
            raise InvalidDetectionError("Detection has no bounding box")
        if record.get("descriptor") is None:
            raise InvalidDetectionError("Detection has no descriptor")

        expressions = record.get("expressions")
        if expressions is not None:
            try:
                expressions = {str(k): float(v) for k, v in dict(expressions).items()}
            except (TypeError, ValueError) as e:
                raise InvalidDetectionError("Expression scores must be numeric") from e

        score = record.get("score")
        if score is not None:
            try:
                score = float(score)
            except (TypeError, ValueError) as e:
                raise InvalidDetectionError(f"Detection score must be numeric, got {score!r}") from e
        return cls(
            bounding_box=BoundingBox.from_value(box_value),
            descriptor=to_descriptor(record["descriptor"], length=descriptor_length),
            landmarks=FaceLandmarks.from_value(record.get("landmarks")),
            expressions=expressions,
            score=score,
        )


@dataclass(frozen=True)
class Identity:
    identity_id: str
    name: Optional[str] = None
    role: Optional[str] = None


@dataclass(frozen=True)
class DescriptorSample:
    sample_id: str
    identity_id: str
    descriptor: np.ndarray
    confidence: float
    captured_at: datetime
    source_image_ref: Optional[str] = None


class MatchOutcome(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    REPOSITORY_UNAVAILABLE = "repository_unavailable"
    INVALID_DESCRIPTOR = "invalid_descriptor"


@dataclass(frozen=True)
class MatchResult:
    identity_id: Optional[str]
    confidence: float
    match_count: int
    outcome: MatchOutcome
    distance: Optional[float] = None
    descriptor: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    @property
    def matched(self) -> bool:
        return self.identity_id is not None


@dataclass(frozen=True)
class TextureAnalysis:
    texture_score: float
    is_real_skin: bool
    texture_variance: float
    color_consistency: float
    micro_patterns: float

    @property
    def spoof_suspected(self) -> bool:
        return not self.is_real_skin


@dataclass(frozen=True)
class LivenessVerdict:
    is_live: bool
    confidence: float
    checks: Dict[str, bool] = field(default_factory=dict)
    texture: Optional[TextureAnalysis] = None
    challenge_type: Optional[str] = None
    quality: Optional[Dict[str, float]] = None


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    LATE = "late"
    UNAUTHORIZED = "unauthorized"


class DecisionReason(str, Enum):
    ACCEPTED = "accepted"
    NO_MATCH = "no_match"
    SPOOF_SUSPECTED = "spoof_suspected"
    REPOSITORY_UNAVAILABLE = "repository_unavailable"
    INVALID_DESCRIPTOR = "invalid_descriptor"


@dataclass(frozen=True)
class AttendanceDecision:
    identity_id: Optional[str]
    status: AttendanceStatus
    reason: DecisionReason
    confidence: float
    liveness: Optional[LivenessVerdict]
    timestamp: datetime
    track_id: Optional[int] = None

    @property
    def accepted(self) -> bool:
        return self.status is not AttendanceStatus.UNAUTHORIZED

    def notification(self):
        """(identity_id, status, confidence) for the notification collaborator."""
        return (self.identity_id, self.status.value, self.confidence)

    def to_record(self):
        """Plain structured record for the persistence collaborator."""
        return {
            "identity_id": self.identity_id,
            "status": self.status.value,
            "reason": self.reason.value,
            "confidence": round(float(self.confidence), 6),
            "is_live": bool(self.liveness.is_live) if self.liveness else False,
            "liveness_confidence": (
                round(float(self.liveness.confidence), 6) if self.liveness else 0.0
            ),
            "track_id": self.track_id,
            "timestamp": self.timestamp.isoformat(),
        }
