"""Tests for multi-face tracking across frames."""

import numpy as np
import pytest

from faceattend.core.errors import ConfigurationError
from faceattend.core.face_tracker import FaceTracker
from faceattend.core.types import MatchOutcome, MatchResult

from helpers import DIM, CountingMatcher, make_detection, no_match


def face(x, y, size=64.0, seed=0):
    return make_detection(np.full(DIM, float(seed)), x=x, y=y, width=size, height=size)


@pytest.fixture
def matcher():
    return CountingMatcher()


def test_track_keeps_id_while_face_moves(matcher):
    tracker = FaceTracker(matcher)
    ids = []
    for frame in range(1, 8):
        faces = tracker.update([face(100 + 10 * frame, 100)], frame)
        ids.append(faces[0].track_id)
    assert ids == [1] * 7


def test_two_faces_keep_their_ids(matcher):
    tracker = FaceTracker(matcher)
    first = tracker.update([face(50, 50), face(400, 50)], 1)
    second = tracker.update([face(405, 55), face(55, 52)], 2)

    assert [f.track_id for f in first] == [1, 2]
    assert [f.track_id for f in second] == [2, 1]


def test_far_jump_starts_a_new_track(matcher):
    tracker = FaceTracker(matcher, max_displacement=100.0)
    tracker.update([face(50, 50)], 1)
    faces = tracker.update([face(400, 400)], 2)
    assert faces[0].track_id == 2


def test_track_survives_max_misses_then_is_destroyed(matcher):
    tracker = FaceTracker(matcher, max_misses=5)
    tracker.update([face(50, 50)], 1)

    for frame in range(2, 7):
        tracker.update([], frame)
        assert 1 in tracker.tracks

    tracker.update([], 7)
    assert 1 not in tracker.tracks
    assert tracker.removed_track_ids == [1]

    # A returning face is a new track
    assert tracker.update([face(50, 50)], 8)[0].track_id == 2


def test_miss_count_resets_when_seen_again(matcher):
    tracker = FaceTracker(matcher, max_misses=2)
    tracker.update([face(50, 50)], 1)
    tracker.update([], 2)
    tracker.update([], 3)
    tracker.update([face(52, 50)], 4)
    tracker.update([], 5)
    tracker.update([], 6)
    assert 1 in tracker.tracks


def test_capacity_keeps_largest_faces(matcher):
    tracker = FaceTracker(matcher, max_faces=5)
    detections = [face(i * 150.0, 0, size=20.0 + i * 10) for i in range(7)]
    faces = tracker.update(detections, 1)

    assert len(faces) == 5
    assert len(tracker.tracks) == 5
    sizes = sorted(f.bounding_box.width for f in faces)
    assert sizes == [40.0, 50.0, 60.0, 70.0, 80.0]


def test_one_match_batch_per_frame(matcher):
    tracker = FaceTracker(matcher)
    tracker.update([face(0, 0), face(200, 0), face(400, 0)], 1)
    assert len(matcher.batches) == 1
    assert len(matcher.batches[0]) == 3


def test_recognition_interval(matcher):
    tracker = FaceTracker(matcher, recognition_interval=3)
    recognized = []
    for frame in range(1, 8):
        faces = tracker.update([face(50, 50)], frame)
        if faces[0].recognized_now:
            recognized.append(frame)
    assert recognized == [1, 4, 7]
    assert matcher.calls == 3


def test_match_result_carries_between_recognitions(matcher):
    tracker = FaceTracker(matcher, recognition_interval=5)
    first = tracker.update([face(50, 50)], 1)[0]
    second = tracker.update([face(52, 50)], 2)[0]
    assert second.recognized_now is False
    assert second.match_result is first.match_result


def test_accepted_track_is_never_recognized_again(matcher):
    tracker = FaceTracker(matcher)
    tracker.update([face(50, 50)], 1)
    tracker.mark_accepted(1)

    for frame in range(2, 6):
        faces = tracker.update([face(50 + frame, 50)], frame)
        assert faces[0].accepted is True
        assert faces[0].recognized_now is False
    assert matcher.calls == 1
    assert tracker.is_accepted(1)



def test_stats_count_seen_and_recognized_tracks():
    def known_when_seeded(descriptor):
        if descriptor[0] == 1.0:
            return MatchResult(identity_id="U1", confidence=0.8, match_count=3,
                               outcome=MatchOutcome.MATCHED, descriptor=descriptor)
        return no_match(descriptor)

    tracker = FaceTracker(CountingMatcher(known_when_seeded))
    assert tracker.stats() == {"total_tracks": 0, "active_tracks": 0, "recognized_tracks": 0}

    tracker.update([face(50, 50, seed=1), face(400, 50)], 1)
    assert tracker.stats() == {"total_tracks": 2, "active_tracks": 2, "recognized_tracks": 1}

    # second face is missed but its track is still held
    tracker.update([face(52, 50, seed=1)], 2)
    assert tracker.stats() == {"total_tracks": 2, "active_tracks": 1, "recognized_tracks": 1}

    tracker.reset()
    assert tracker.stats()["total_tracks"] == 0

def test_reset_forgets_all_tracks(matcher):
    tracker = FaceTracker(matcher)
    tracker.update([face(0, 0), face(300, 0)], 1)
    tracker.reset()
    assert tracker.tracks == {}
    assert sorted(tracker.removed_track_ids) == [1, 2]


@pytest.mark.parametrize("kwargs", [{"max_faces": 0}, {"max_misses": -1}, {"recognition_interval": 0}])
def test_invalid_configuration(matcher, kwargs):
    with pytest.raises(ConfigurationError):
        FaceTracker(matcher, **kwargs)
