import sqlite3
from datetime import datetime

from faceattend.core.errors import InvalidDetectionError, RepositoryUnavailableError
from faceattend.core.types import DescriptorSample
from faceattend.core.vector_math import descriptor_to_string, string_to_descriptor
from faceattend.database.models import FaceDescriptorModel
from faceattend.utils.logging import setup_logger


class SqliteDescriptorStore:
    """
    Descriptor storage backed by the face_descriptors table.
    Descriptors are stored as JSON arrays of floats.
    """

    def __init__(self, db_manager, descriptor_length=None):
        self.db = db_manager
        self.model = FaceDescriptorModel(db_manager)
        self.descriptor_length = descriptor_length
        self.logger = setup_logger()

    def add(self, sample):
        self._run(
            self.model.create,
            sample.sample_id,
            sample.identity_id,
            descriptor_to_string(sample.descriptor),
            sample.confidence,
            sample.captured_at.isoformat(),
            sample.source_image_ref,
        )

    def samples_for(self, identity_id):
        rows = self._run(self.model.get_by_identity, identity_id)
        return self._to_samples(rows)

    def all_samples(self):
        grouped = {}
        for sample in self._to_samples(self._run(self.model.get_all)):
            grouped.setdefault(sample.identity_id, []).append(sample)
        return grouped

    def delete(self, identity_id, sample_ids):
        self._run(self.model.delete_many, list(sample_ids))

    def delete_identity(self, identity_id):
        return self._run(self.model.delete_by_identity, identity_id)

    def _run(self, operation, *args):
        try:
            return operation(*args)
        except sqlite3.Error as e:
            raise RepositoryUnavailableError(f"Descriptor store failed: {e}") from e

    def _to_samples(self, rows):
        samples = []
        for row in rows:
            try:
                descriptor = string_to_descriptor(row["descriptor"], length=self.descriptor_length)
            except InvalidDetectionError as e:
                self.logger.warning(f"Skipping unreadable descriptor {row['id']} of {row['identity_id']}: {e}")
                continue
            samples.append(DescriptorSample(
                sample_id=row["id"],
                identity_id=row["identity_id"],
                descriptor=descriptor,
                confidence=float(row["confidence_score"]),
                captured_at=datetime.fromisoformat(row["captured_at"]),
                source_image_ref=row["image_ref"],
            ))
        return samples
