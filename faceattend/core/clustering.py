"""
Batch grouping of unlabeled face descriptors (e.g. a bulk registration
import) into clusters that each stand for one person.

The grouping is a greedy single pass, not k-means: each still-unassigned
sample in input order seeds a cluster and absorbs every later unassigned
sample close enough to it. The result therefore depends on input order and
is not globally optimal. Clusters are never written back to the live
descriptor repository.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances

from faceattend.config.settings import (
    CLUSTER_MERGE_THRESHOLD,
    CLUSTER_MIN_SIZE,
    CLUSTER_SIMILARITY_THRESHOLD,
)
from faceattend.core.errors import ConfigurationError, DimensionMismatchError
from faceattend.core.vector_math import euclidean_distance, mean_vector, to_descriptor
from faceattend.utils.logging import setup_logger


@dataclass(frozen=True)
class SampleMetadata:
    label: Optional[str] = None
    source_ref: Optional[str] = None


@dataclass(frozen=True)
class ClusterSample:
    descriptor: np.ndarray
    metadata: SampleMetadata = field(default_factory=SampleMetadata)

    @classmethod
    def from_record(cls, record):
        metadata = record.get("metadata") or {}
        return cls(
            descriptor=to_descriptor(record["descriptor"], length=None),
            metadata=SampleMetadata(
                label=metadata.get("label"),
                source_ref=metadata.get("source_ref"),
            ),
        )


@dataclass(frozen=True)
class ClusterMember:
    descriptor: np.ndarray
    metadata: SampleMetadata
    similarity: float


@dataclass
class Cluster:
    cluster_id: str
    members: List[ClusterMember] = field(default_factory=list)
    centroid: Optional[np.ndarray] = None

    def __post_init__(self):
        self._recompute()

    @property
    def size(self):
        return len(self.members)

    @property
    def avg_confidence(self):
        if not self.members:
            return 0.0
        return sum(m.similarity for m in self.members) / len(self.members)

    def add_member(self, member):
        self.members.append(member)
        self._recompute()
        return self

    def _recompute(self):
        if self.members:
            self.centroid = mean_vector([m.descriptor for m in self.members])


@dataclass
class ClusteringResult:
    clusters: List[Cluster]
    total_faces: int
    unclustered_faces: int
    avg_cluster_size: float

    @property
    def clustered_faces(self):
        return sum(c.size for c in self.clusters)


class ClusterEngine:

    def __init__(self):
        self.logger = setup_logger()

    def cluster(self, samples, max_clusters=None,
                similarity_threshold=CLUSTER_SIMILARITY_THRESHOLD,
                min_cluster_size=CLUSTER_MIN_SIZE):
        """
        Group samples whose similarity (1 - distance) to a seed sample is at
        least similarity_threshold. Clusters smaller than min_cluster_size
        are dropped and their members count as unclustered. At most
        max_clusters (default ceil(sqrt(n))) of the largest clusters are kept.
        """
        if min_cluster_size < 1:
            raise ConfigurationError(f"min_cluster_size must be at least 1, got {min_cluster_size}")

        samples = [s if isinstance(s, ClusterSample) else ClusterSample.from_record(s) for s in samples]
        total = len(samples)
        if total == 0:
            return ClusteringResult(clusters=[], total_faces=0, unclustered_faces=0, avg_cluster_size=0.0)

        if max_clusters is None:
            max_clusters = math.ceil(math.sqrt(total))

        lengths = {len(s.descriptor) for s in samples}
        if len(lengths) > 1:
            raise DimensionMismatchError(*sorted(lengths)[:2])

        distances = euclidean_distances(np.vstack([s.descriptor for s in samples]))
        clusters = []
        processed = set()

        for i, seed in enumerate(samples):
            if i in processed:
                continue
            processed.add(i)
            members = [ClusterMember(seed.descriptor, seed.metadata, 1.0)]

            for j in range(i + 1, total):
                if j in processed:
                    continue
                similarity = 1.0 - float(distances[i, j])
                if similarity >= similarity_threshold:
                    members.append(ClusterMember(samples[j].descriptor, samples[j].metadata, similarity))
                    processed.add(j)

            if len(members) >= min_cluster_size:
                clusters.append(Cluster(cluster_id=f"cluster_{len(clusters) + 1}", members=members))

        clusters.sort(key=lambda c: c.size, reverse=True)
        final_clusters = clusters[:max_clusters]
        clustered = sum(c.size for c in final_clusters)

        self.logger.info(
            f"Clustered {clustered} of {total} faces into {len(final_clusters)} cluster(s)"
        )
        return ClusteringResult(
            clusters=final_clusters,
            total_faces=total,
            unclustered_faces=total - clustered,
            avg_cluster_size=clustered / len(final_clusters) if final_clusters else 0.0,
        )

    @staticmethod
    def find_best_cluster(descriptor, clusters, threshold=CLUSTER_SIMILARITY_THRESHOLD):
        """
        Which cluster a new face belongs to. Returns (cluster or None, similarity).
        """
        best_cluster = None
        best_similarity = 0.0
        for cluster in clusters:
            if cluster.centroid is None:
                continue
            similarity = 1.0 - euclidean_distance(descriptor, cluster.centroid)
            if similarity > best_similarity and similarity >= threshold:
                best_cluster = cluster
                best_similarity = similarity
        return best_cluster, best_similarity

    def merge_similar_clusters(self, clusters, merge_threshold=CLUSTER_MERGE_THRESHOLD):
        """
        Merge any two clusters whose centroids are similar enough, repeating
        until no pair qualifies. Every merge removes one cluster, so this ends.
        """
        merged_clusters = list(clusters)
        merged = True

        while merged:
            merged = False
            for i in range(len(merged_clusters) - 1):
                for j in range(i + 1, len(merged_clusters)):
                    first, second = merged_clusters[i], merged_clusters[j]
                    if first.centroid is None or second.centroid is None:
                        continue
                    similarity = 1.0 - euclidean_distance(first.centroid, second.centroid)
                    if similarity >= merge_threshold:
                        merged_clusters[i] = Cluster(
                            cluster_id=f"merged_{first.cluster_id}_{second.cluster_id}",
                            members=first.members + second.members,
                        )
                        del merged_clusters[j]
                        self.logger.info(f"Merged {first.cluster_id} and {second.cluster_id}")
                        merged = True
                        break
                if merged:
                    break

        return sorted(merged_clusters, key=lambda c: c.size, reverse=True)


def cluster_stats(clusters):
    sizes = [c.size for c in clusters]
    total = sum(sizes)
    return {
        "total_clusters": len(clusters),
        "total_faces": total,
        "avg_cluster_size": total / len(clusters) if clusters else 0.0,
        "largest_cluster": max(sizes) if sizes else 0,
        "smallest_cluster": min(sizes) if sizes else 0,
        "avg_confidence": (
            sum(c.avg_confidence for c in clusters) / len(clusters) if clusters else 0.0
        ),
    }
