"""Tests for descriptor arithmetic and encoding."""

import numpy as np
import pytest

from faceattend.core.errors import DimensionMismatchError, InvalidDetectionError
from faceattend.core.vector_math import (
    descriptor_to_string,
    distances_to,
    euclidean_distance,
    mean_vector,
    string_to_descriptor,
    to_descriptor,
)

from helpers import DIM, basis


class TestDistance:
    def test_symmetric_and_zero_on_self(self):
        rng = np.random.default_rng(1)
        a, b = rng.normal(size=DIM), rng.normal(size=DIM)

        assert euclidean_distance(a, b) == euclidean_distance(b, a)
        assert euclidean_distance(a, a) == 0.0

    def test_known_value(self):
        assert euclidean_distance(basis(0, 3.0), basis(1, 4.0)) == pytest.approx(5.0)

    def test_dimension_mismatch_is_not_a_distance(self):
        with pytest.raises(DimensionMismatchError) as exc:
            euclidean_distance(np.zeros(128), np.zeros(64))
        assert isinstance(exc.value, ValueError)
        assert exc.value.left == 128
        assert exc.value.right == 64

    def test_scalar_against_vector_is_a_mismatch(self):
        with pytest.raises(DimensionMismatchError) as exc:
            euclidean_distance(np.float64(1.0), np.zeros(3))
        assert exc.value.left == 1
        assert exc.value.right == 3

    def test_distances_to_matrix(self):
        matrix = np.vstack([basis(0, 0.1), basis(1, 0.2), np.zeros(DIM)])
        result = distances_to(np.zeros(DIM), matrix)
        assert result.tolist() == pytest.approx([0.1, 0.2, 0.0])

    def test_distances_to_rejects_other_width(self):
        with pytest.raises(DimensionMismatchError):
            distances_to(np.zeros(DIM), np.zeros((2, 64)))


class TestMeanVector:
    def test_element_wise_mean(self):
        centroid = mean_vector([basis(0, 1.0), basis(1, 1.0)])
        assert centroid[0] == pytest.approx(0.5)
        assert centroid[1] == pytest.approx(0.5)
        assert centroid[2:].sum() == 0.0

    def test_empty_group_is_zero_vector(self):
        centroid = mean_vector([])
        assert centroid.shape == (DIM,)
        assert not centroid.any()

    def test_mixed_lengths_raise(self):
        with pytest.raises(DimensionMismatchError):
            mean_vector([np.zeros(DIM), np.zeros(3)])


class TestDescriptor:
    def test_descriptor_is_read_only(self):
        descriptor = to_descriptor(np.zeros(DIM))
        with pytest.raises(ValueError):
            descriptor[0] = 1.0

    @pytest.mark.parametrize("values", [np.zeros(127), np.zeros((2, 64)), ["a"] * DIM])
    def test_malformed_values_rejected(self, values):
        with pytest.raises(InvalidDetectionError):
            to_descriptor(values)

    def test_nan_rejected(self):
        values = np.zeros(DIM)
        values[5] = np.nan
        with pytest.raises(InvalidDetectionError):
            to_descriptor(values)

    def test_text_encoding_is_lossless(self):
        source = np.random.default_rng(3).normal(size=DIM)
        decoded = string_to_descriptor(descriptor_to_string(source))
        assert np.array_equal(decoded, source)

    def test_bad_text_rejected(self):
        with pytest.raises(InvalidDetectionError):
            string_to_descriptor("not json")
