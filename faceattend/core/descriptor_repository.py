import threading
import uuid
from collections import OrderedDict
from datetime import datetime

from faceattend.config.settings import (
    DESCRIPTOR_LENGTH,
    ENROLLMENT_CONFIDENCE,
    MAX_DESCRIPTORS_PER_USER,
    MIN_CONFIDENCE_TO_LEARN,
)
from faceattend.core.errors import ConfigurationError
from faceattend.core.types import DescriptorSample
from faceattend.core.vector_math import to_descriptor
from faceattend.utils.logging import setup_logger


class ConfidenceRankedEviction:
    """
    Keep the best samples ranked by (confidence desc, captured_at desc).
    """

    name = "confidence"

    def rank(self, samples):
        return sorted(samples, key=lambda s: (s.confidence, s.captured_at), reverse=True)

    def select(self, samples, capacity):
        """
        Split samples into (kept, evicted), both best-ranked first.
        """
        ranked = self.rank(samples)
        return ranked[:capacity], ranked[capacity:]


class RecencyEviction(ConfidenceRankedEviction):
    """
    Keep the most recently captured samples regardless of confidence.
    """

    name = "recency"

    def rank(self, samples):
        return sorted(samples, key=lambda s: (s.captured_at, s.confidence), reverse=True)


class InMemoryDescriptorStore:
    """
    Process-local sample storage. Lifetime is whatever the caller gives it.
    """

    def __init__(self):
        self._samples = OrderedDict()

    def add(self, sample):
        self._samples.setdefault(sample.identity_id, []).append(sample)

    def samples_for(self, identity_id):
        return list(self._samples.get(identity_id, []))

    def all_samples(self):
        return {identity_id: list(samples) for identity_id, samples in self._samples.items()}

    def delete(self, identity_id, sample_ids):
        sample_ids = set(sample_ids)
        remaining = [s for s in self._samples.get(identity_id, []) if s.sample_id not in sample_ids]
        if remaining:
            self._samples[identity_id] = remaining
        else:
            self._samples.pop(identity_id, None)

    def delete_identity(self, identity_id):
        return len(self._samples.pop(identity_id, []))


class DescriptorRepository:
    """
    Stores multiple face descriptors per identity so that recognition
    improves over time. Each identity holds at most max_descriptors_per_user
    samples; anything ranked below the cut is deleted, not archived.
    """

    def __init__(self, store=None, eviction_policy=None,
                 max_descriptors_per_user=MAX_DESCRIPTORS_PER_USER,
                 min_confidence_to_learn=MIN_CONFIDENCE_TO_LEARN,
                 descriptor_length=DESCRIPTOR_LENGTH,
                 clock=None):
        if max_descriptors_per_user < 1:
            raise ConfigurationError(
                f"max_descriptors_per_user must be at least 1, got {max_descriptors_per_user}"
            )
        if not 0.0 <= min_confidence_to_learn <= 1.0:
            raise ConfigurationError(
                f"min_confidence_to_learn must be within [0, 1], got {min_confidence_to_learn}"
            )

        self.store = store if store is not None else InMemoryDescriptorStore()
        self.eviction_policy = eviction_policy or ConfidenceRankedEviction()
        self.max_descriptors_per_user = max_descriptors_per_user
        self.min_confidence_to_learn = min_confidence_to_learn
        self.descriptor_length = descriptor_length
        self.clock = clock or datetime.now
        self.logger = setup_logger()
        self._lock = threading.RLock()

    def learn(self, identity_id, descriptor, confidence, image_ref=None):
        """
        Store a new descriptor for an identity (learning from a successful
        recognition). Returns False, without touching the store, when the
        confidence is below the learning threshold.
        """
        confidence = float(confidence)
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")

        if confidence < self.min_confidence_to_learn:
            self.logger.info(
                f"Skipping learning for {identity_id} - confidence {confidence:.2f} "
                f"below threshold {self.min_confidence_to_learn}"
            )
            return False

        sample = DescriptorSample(
            sample_id=uuid.uuid4().hex,
            identity_id=str(identity_id),
            descriptor=to_descriptor(descriptor, length=self.descriptor_length),
            confidence=confidence,
            captured_at=self.clock(),
            source_image_ref=image_ref,
        )

        with self._lock:
            self.store.add(sample)
            self.evict(sample.identity_id)

        self.logger.info(f"Learned new descriptor for {identity_id} with confidence {confidence:.2f}")
        return True

    def enroll(self, identity_id, descriptor, confidence=ENROLLMENT_CONFIDENCE, image_ref=None):
        """
        Explicit enrollment of a reference descriptor.
        """
        return self.learn(identity_id, descriptor, confidence, image_ref=image_ref)

    def evict(self, identity_id):
        """
        Enforce the per-identity cap. Returns the number of deleted samples.
        """
        with self._lock:
            samples = self.store.samples_for(identity_id)
            if len(samples) <= self.max_descriptors_per_user:
                return 0

            _, evicted = self.eviction_policy.select(samples, self.max_descriptors_per_user)
            self.store.delete(identity_id, [s.sample_id for s in evicted])

        self.logger.info(f"Cleaned up {len(evicted)} old descriptors for {identity_id}")
        return len(evicted)

    def get_samples(self, identity_id):
        with self._lock:
            samples = self.store.samples_for(identity_id)
        return self.eviction_policy.rank(samples)

    def get_descriptors(self, identity_id):
        """
        All stored descriptors for one identity, best-ranked first.
        """
        return [s.descriptor for s in self.get_samples(identity_id)]

    def get_all_descriptors(self):
        """
        Snapshot of {identity_id: [descriptor, ...]} for one matching pass.
        The returned mapping is a copy and does not follow later writes.
        """
        with self._lock:
            all_samples = self.store.all_samples()
        return {
            identity_id: [s.descriptor for s in self.eviction_policy.rank(samples)]
            for identity_id, samples in all_samples.items()
            if samples
        }

    def identities(self):
        return list(self.get_all_descriptors().keys())

    def remove_identity(self, identity_id):
        with self._lock:
            removed = self.store.delete_identity(identity_id)
        self.logger.info(f"Removed {removed} descriptors for {identity_id}")
        return removed

    def stats(self):
        snapshot = self.get_all_descriptors()
        total_users = len(snapshot)
        total_descriptors = sum(len(d) for d in snapshot.values())
        return {
            "total_users": total_users,
            "total_descriptors": total_descriptors,
            "avg_descriptors_per_user": total_descriptors / total_users if total_users else 0.0,
        }
