"""Tests for the native buffer layout and vector/matrix adapters."""

import ctypes

import jax.numpy as jnp
import numpy as np
import pytest

from sunjax._foreign import (
    SUN_CONTENT_DATA_OFFSET,
    SUN_CONTENT_LENGTH_OFFSET,
    BorrowedVector,
    SunIndexType,
    SunVector,
    SunVectorContent,
    as_dense_matrix,
    as_state_vector,
    stack_rows,
)


class TestLayout:
    def test_index_type_is_64_bit(self):
        assert ctypes.sizeof(SunIndexType) == 8

    def test_offsets(self):
        """length leads the block and data is pointer-aligned after own_data."""
        assert SUN_CONTENT_LENGTH_OFFSET == 0
        assert SUN_CONTENT_DATA_OFFSET % ctypes.alignment(ctypes.c_void_p) == 0
        assert SUN_CONTENT_DATA_OFFSET >= 12

    def test_struct_size(self):
        assert ctypes.sizeof(SunVectorContent) == SUN_CONTENT_DATA_OFFSET + ctypes.sizeof(
            ctypes.c_void_p
        )


class TestSunVector:
    def test_zero_copy_for_float64(self):
        buf = np.array([1.0, 2.0, 3.0])
        v = SunVector(buf)
        assert v.as_numpy() is buf
        assert v.content.length == 3
        assert v.content.data[1] == 2.0

    def test_copy_for_other_dtypes(self):
        buf = np.array([1, 2], dtype=np.int32)
        v = SunVector(buf)
        assert v.as_numpy().dtype == np.float64
        assert v.as_numpy() is not buf

    def test_writes_visible_through_content(self):
        v = SunVector.zeros(2)
        v.content.data[0] = 4.5
        assert v.as_numpy()[0] == 4.5

    def test_to_array(self):
        arr = SunVector(np.array([1.0, -1.0])).to_array()
        assert arr.dtype == jnp.float64
        assert jnp.allclose(arr, jnp.array([1.0, -1.0]))

    def test_rejects_matrix(self):
        with pytest.raises(ValueError, match="1-D"):
            SunVector(np.zeros((2, 2)))


class TestBorrowedVector:
    def test_view_from_pointer(self):
        owner = SunVector(np.array([1.0, 2.0]))
        borrowed = BorrowedVector(owner.pointer())
        assert len(borrowed) == 2
        view = borrowed.as_numpy()
        view[1] = 7.0
        assert owner.as_numpy()[1] == 7.0

    def test_view_from_structure(self):
        owner = SunVector(np.array([3.0]))
        assert BorrowedVector(owner.content).to_array()[0] == 3.0

    def test_to_array_copies(self):
        owner = SunVector(np.array([1.0]))
        copy = BorrowedVector(owner.pointer()).to_array()
        owner.as_numpy()[0] = 9.0
        assert float(copy[0]) == 1.0

    def test_empty(self):
        assert BorrowedVector(SunVector.zeros(0).pointer()).as_numpy().shape == (0,)


class TestConversions:
    def test_state_vector(self):
        v = as_state_vector([1, 2], 2)
        assert v.dtype == jnp.float64

    def test_state_vector_wrong_length(self):
        with pytest.raises(ValueError, match="length 3"):
            as_state_vector(jnp.ones(2), 3)

    def test_state_vector_not_1d(self):
        with pytest.raises(ValueError, match="1-D"):
            as_state_vector(jnp.ones((2, 1)))

    def test_dense_matrix(self):
        m = as_dense_matrix([[1.0, 2.0], [3.0, 4.0]], 2)
        assert m[1, 0] == 3.0

    def test_dense_matrix_wrong_shape(self):
        with pytest.raises(ValueError, match=r"\(2, 2\)"):
            as_dense_matrix(jnp.ones((2, 3)), 2)

    def test_stack_rows(self):
        m = stack_rows([jnp.array([1.0, 2.0]), jnp.array([3.0, 4.0])], 2)
        assert m.shape == (2, 2)

    def test_stack_rows_empty(self):
        """An empty output is (0, n), not a failure."""
        assert stack_rows([], 3).shape == (0, 3)
