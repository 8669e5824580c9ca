import json
import numpy as np
from faceattend.config.settings import DESCRIPTOR_LENGTH
from faceattend.core.errors import DimensionMismatchError, InvalidDetectionError


def to_descriptor(values, length=DESCRIPTOR_LENGTH):
    """
    Build an immutable descriptor array from any numeric sequence.
    Pass length=None to skip the length check.
    """
    try:
        descriptor = np.array(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidDetectionError(f"Descriptor is not numeric: {e}") from e

    if descriptor.ndim != 1:
        raise InvalidDetectionError(f"Descriptor must be 1-D, got shape {descriptor.shape}")
    if length is not None and descriptor.shape[0] != length:
        raise InvalidDetectionError(
            f"Descriptor must have {length} elements, got {descriptor.shape[0]}"
        )
    if not np.all(np.isfinite(descriptor)):
        raise InvalidDetectionError("Descriptor contains NaN or infinite values")

    descriptor.setflags(write=False)
    return descriptor


def euclidean_distance(a, b):
    """
    Euclidean distance between two descriptors.
    Raises DimensionMismatchError instead of comparing vectors of different length.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.size, b.size)
    return float(np.linalg.norm(a - b))


def distances_to(query, matrix):
    """
    Distances from one descriptor to every row of a (n, d) matrix.
    """
    query = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise DimensionMismatchError(query.shape[0], matrix.shape[-1])
    return np.linalg.norm(matrix - query, axis=1)


def mean_vector(vectors, length=DESCRIPTOR_LENGTH):
    """
    Element-wise mean of a group of descriptors (the cluster centroid).
    An empty group yields a zero vector of the default length.
    """
    if len(vectors) == 0:
        return np.zeros(length, dtype=np.float64)

    first = len(vectors[0])
    for vector in vectors[1:]:
        if len(vector) != first:
            raise DimensionMismatchError(first, len(vector))
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0)


def descriptor_to_string(descriptor):
    # repr-exact floats keep the round trip lossless
    return json.dumps([float(x) for x in descriptor])


def string_to_descriptor(text, length=DESCRIPTOR_LENGTH):
    try:
        values = json.loads(text)
    except (TypeError, ValueError) as e:
        raise InvalidDetectionError(f"Descriptor text is not valid JSON: {e}") from e
    return to_descriptor(values, length=length)
