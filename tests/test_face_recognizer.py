"""Tests for ensemble matching against the descriptor repository."""

import numpy as np
import pytest

from faceattend.core.descriptor_repository import DescriptorRepository
from faceattend.core.errors import ConfigurationError, RepositoryUnavailableError
from faceattend.core.face_recognizer import AdaptiveMatcher
from faceattend.core.types import DescriptorSample, MatchOutcome

from helpers import DIM, SteppingDatetime, basis


@pytest.fixture
def repository():
    return DescriptorRepository(clock=SteppingDatetime())


class UnavailableRepository:
    def get_all_descriptors(self):
        raise RepositoryUnavailableError("backing store offline")


class CountingRepository:
    def __init__(self, repository):
        self.repository = repository
        self.snapshots = 0

    def get_all_descriptors(self):
        self.snapshots += 1
        return self.repository.get_all_descriptors()


def test_empty_repository_is_no_match(repository):
    result = AdaptiveMatcher(repository).match(np.zeros(DIM))
    assert result.identity_id is None
    assert result.confidence == 0.0
    assert result.outcome is MatchOutcome.NO_MATCH


def test_accept_threshold_is_strict(repository):
    repository.enroll("U1", np.zeros(DIM))
    matcher = AdaptiveMatcher(repository)

    at_threshold = matcher.match(basis(0, 0.40))
    assert at_threshold.identity_id is None
    assert at_threshold.outcome is MatchOutcome.NO_MATCH

    inside = matcher.match(basis(0, 0.399))
    assert inside.identity_id == "U1"
    assert inside.confidence == pytest.approx(0.601)
    assert inside.outcome is MatchOutcome.MATCHED


def test_confidence_is_one_minus_ensemble_distance(repository):
    # distances 0.1, 0.1, 0.1 and an outlier at 0.9 that falls outside the top 3
    for i, d in enumerate([0.1, 0.1, 0.1, 0.9]):
        repository.enroll("U1", basis(i, d))
    result = AdaptiveMatcher(repository).match(np.zeros(DIM))

    assert result.identity_id == "U1"
    assert result.distance == pytest.approx(0.1)
    assert result.confidence == pytest.approx(0.9)
    assert result.match_count == 3


def test_lower_average_distance_wins(repository):
    repository.enroll("U1", basis(0, 0.30))
    repository.enroll("U2", basis(1, 0.20))
    result = AdaptiveMatcher(repository).match(np.zeros(DIM))
    assert result.identity_id == "U2"


def test_near_tie_prefers_more_good_matches(repository):
    repository.enroll("A", basis(0, 0.30))
    for i in range(1, 4):
        repository.enroll("B", basis(i, 0.31))

    result = AdaptiveMatcher(repository).match(np.zeros(DIM))
    assert result.identity_id == "B"
    assert result.match_count == 3
    assert result.confidence == pytest.approx(0.69)


def test_outside_tie_margin_distance_decides(repository):
    repository.enroll("A", basis(0, 0.30))
    for i in range(1, 4):
        repository.enroll("B", basis(i, 0.33))

    assert AdaptiveMatcher(repository).match(np.zeros(DIM)).identity_id == "A"


def test_matching_is_deterministic(repository):
    rng = np.random.default_rng(5)
    for identity in ("U1", "U2", "U3"):
        centre = rng.normal(size=DIM) * 0.05
        for _ in range(4):
            repository.enroll(identity, centre + rng.normal(size=DIM) * 0.01)
    query = rng.normal(size=DIM) * 0.05
    matcher = AdaptiveMatcher(repository, accept_threshold=10.0, match_threshold=10.0)

    first = matcher.match(query)
    for _ in range(5):
        again = matcher.match(query)
        assert again.identity_id == first.identity_id
        assert again.confidence == first.confidence
        assert again.match_count == first.match_count


def test_batch_uses_one_snapshot(repository):
    repository.enroll("U1", np.zeros(DIM))
    counting = CountingRepository(repository)
    results = AdaptiveMatcher(counting).match_batch([basis(0, 0.1), basis(1, 0.2), basis(2, 3.0)])

    assert counting.snapshots == 1
    assert [r.identity_id for r in results] == ["U1", "U1", None]


def test_unavailable_repository_fails_closed():
    results = AdaptiveMatcher(UnavailableRepository()).match_batch([np.zeros(DIM), np.ones(DIM)])
    assert all(r.identity_id is None for r in results)
    assert all(r.outcome is MatchOutcome.REPOSITORY_UNAVAILABLE for r in results)


def test_mismatched_stored_descriptor_is_skipped(repository):
    repository.enroll("U1", basis(0, 0.1))
    # Bypass validation to simulate a corrupt row in the backing store
    repository.store.add(DescriptorSample(
        sample_id="bad", identity_id="U1", descriptor=np.zeros(64),
        confidence=1.0, captured_at=repository.clock(),
    ))
    repository.store.add(DescriptorSample(
        sample_id="bad2", identity_id="U9", descriptor=np.zeros(64),
        confidence=1.0, captured_at=repository.clock(),
    ))

    result = AdaptiveMatcher(repository).match(np.zeros(DIM))
    assert result.identity_id == "U1"
    assert result.confidence == pytest.approx(0.9)


def test_nothing_comparable_is_invalid_descriptor(repository):
    repository.enroll("U1", np.zeros(DIM))
    result = AdaptiveMatcher(repository).match(np.zeros(64))
    assert result.identity_id is None
    assert result.outcome is MatchOutcome.INVALID_DESCRIPTOR


@pytest.mark.parametrize("kwargs", [{"accept_threshold": 0}, {"top_k": 0}])
def test_invalid_configuration(repository, kwargs):
    with pytest.raises(ConfigurationError):
        AdaptiveMatcher(repository, **kwargs)
