import math
import numpy as np
from faceattend.config.settings import (
    ACCEPT_THRESHOLD,
    ENSEMBLE_TOP_K,
    MATCH_THRESHOLD,
    TIE_MARGIN,
)
from faceattend.core.errors import (
    ConfigurationError,
    DimensionMismatchError,
    RepositoryUnavailableError,
)
from faceattend.core.types import MatchOutcome, MatchResult
from faceattend.core.vector_math import distances_to
from faceattend.utils.logging import setup_logger


class AdaptiveMatcher:
    """
    Matches a descriptor against every enrolled identity using the mean of
    its best top_k distances (ensemble averaging) instead of one nearest
    neighbour.
    """

    def __init__(self, repository, accept_threshold=ACCEPT_THRESHOLD,
                 match_threshold=MATCH_THRESHOLD, top_k=ENSEMBLE_TOP_K,
                 tie_margin=TIE_MARGIN):
        if accept_threshold <= 0 or match_threshold <= 0:
            raise ConfigurationError("Distance thresholds must be positive")
        if top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {top_k}")

        self.repository = repository
        self.accept_threshold = accept_threshold
        self.match_threshold = match_threshold
        self.top_k = top_k
        self.tie_margin = tie_margin
        self.logger = setup_logger()

    def match(self, descriptor):
        """
        Returns a MatchResult for one input descriptor.
        """
        return self.match_batch([descriptor])[0]

    def match_batch(self, descriptors):
        """
        Match several descriptors against a single repository snapshot.
        If the snapshot cannot be taken every result fails closed.
        """
        try:
            snapshot = self.repository.get_all_descriptors()
        except RepositoryUnavailableError as e:
            self.logger.error(f"Descriptor snapshot unavailable, rejecting {len(descriptors)} face(s): {e}")
            return [self._rejected(MatchOutcome.REPOSITORY_UNAVAILABLE, d) for d in descriptors]

        matrices = self._stack(snapshot)
        return [self.match_snapshot(d, matrices) for d in descriptors]

    def match_snapshot(self, descriptor, matrices):
        """
        Match against pre-stacked {identity_id: [matrix, ...]} descriptor groups.
        """
        query = np.asarray(descriptor, dtype=np.float64)
        if not matrices:
            self.logger.info("No enrolled descriptors available yet")
            return self._rejected(MatchOutcome.NO_MATCH, descriptor)

        best_identity = None
        best_distance = math.inf
        best_match_count = 0
        compared = 0

        for identity_id, groups in matrices.items():
            distances = []
            for matrix in groups:
                try:
                    distances.append(distances_to(query, matrix))
                except DimensionMismatchError as e:
                    self.logger.warning(f"Skipping {len(matrix)} descriptor(s) of {identity_id}: {e}")
            if not distances:
                continue

            distances = np.sort(np.concatenate(distances))
            compared += 1
            top_n = min(self.top_k, len(distances))
            avg_distance = float(np.mean(distances[:top_n]))
            match_count = int(np.count_nonzero(distances < self.match_threshold))

            # Better match if lower average distance, or near-equal distance with more good matches
            if (avg_distance < best_distance or
                    (abs(avg_distance - best_distance) < self.tie_margin
                     and match_count > best_match_count)):
                best_identity = identity_id
                best_distance = avg_distance
                best_match_count = match_count

        if compared == 0:
            return self._rejected(MatchOutcome.INVALID_DESCRIPTOR, descriptor)

        if best_distance < self.accept_threshold:
            confidence = 1.0 - best_distance
            self.logger.info(
                f"Adaptive recognition: {best_identity} with confidence {confidence:.2f} "
                f"({best_match_count} matches)"
            )
            return MatchResult(
                identity_id=best_identity,
                confidence=confidence,
                match_count=best_match_count,
                outcome=MatchOutcome.MATCHED,
                distance=best_distance,
                descriptor=descriptor,
            )

        return MatchResult(
            identity_id=None,
            confidence=0.0,
            match_count=best_match_count,
            outcome=MatchOutcome.NO_MATCH,
            distance=best_distance,
            descriptor=descriptor,
        )

    @staticmethod
    def _stack(snapshot):
        # Group descriptors by length so one bad sample does not poison the rest
        matrices = {}
        for identity_id, descriptors in snapshot.items():
            by_length = {}
            for d in descriptors:
                by_length.setdefault(len(d), []).append(d)
            if by_length:
                matrices[identity_id] = [np.vstack(group) for group in by_length.values()]
        return matrices

    @staticmethod
    def _rejected(outcome, descriptor):
        return MatchResult(
            identity_id=None,
            confidence=0.0,
            match_count=0,
            outcome=outcome,
            descriptor=descriptor,
        )
