from datetime import datetime, timedelta

import numpy as np

from faceattend.core.types import BoundingBox, Detection, FaceLandmarks, MatchOutcome, MatchResult
from faceattend.core.vector_math import to_descriptor

DIM = 128


def basis(index, scale=1.0, base=None):
    vector = np.zeros(DIM) if base is None else np.array(base, dtype=np.float64)
    vector[index] += scale
    return vector


def make_detection(descriptor, x=50.0, y=50.0, width=64.0, height=64.0,
                   landmarks=None, expressions=None):
    return Detection(
        bounding_box=BoundingBox(x, y, width, height),
        descriptor=to_descriptor(descriptor),
        landmarks=landmarks,
        expressions=expressions,
    )


def eye_with_ear(ear, offset_x=0.0):
    """Six EAR-ordered eye points whose aspect ratio is exactly `ear`."""
    v = 1.5 * ear
    return np.array([
        [offset_x + 0.0, 0.0],
        [offset_x + 1.0, v],
        [offset_x + 2.0, v],
        [offset_x + 3.0, 0.0],
        [offset_x + 2.0, -v],
        [offset_x + 1.0, -v],
    ])


def landmarks(ear=0.3, nose=(132.0, 90.0)):
    return FaceLandmarks(
        left_eye=eye_with_ear(ear),
        right_eye=eye_with_ear(ear, offset_x=10.0),
        nose_tip=nose,
    )


def no_match(descriptor=None):
    return MatchResult(identity_id=None, confidence=0.0, match_count=0,
                       outcome=MatchOutcome.NO_MATCH, descriptor=descriptor)


class FakeClock:
    """Monotonic clock under test control (seconds)."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class SteppingDatetime:
    """Returns a strictly increasing datetime on every call."""

    def __init__(self, start=datetime(2026, 3, 2, 8, 0, 0), step=timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


class CountingMatcher:
    """Matcher stand-in that records every batch it is asked to resolve."""

    def __init__(self, result_factory=None):
        self.batches = []
        self.result_factory = result_factory or no_match

    def match_batch(self, descriptors):
        self.batches.append(list(descriptors))
        return [self.result_factory(d) for d in descriptors]

    @property
    def calls(self):
        return sum(len(b) for b in self.batches)
