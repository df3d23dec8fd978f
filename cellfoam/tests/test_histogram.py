"""
Tests for the edge histograms and the binary partition.
"""
import numpy as np
import pytest
from numpy.testing import assert_allclose

from cellfoam.histogram import EdgeHistogram
from cellfoam.partition import BinaryPartition


class TestEdgeHistogram:
    def test_find_bin(self):
        h = EdgeHistogram(0.0, 1.0, 4)
        assert list(h.find_bin([-0.1, 0.0, 0.24, 0.25, 0.99, 1.0, 3.0])) == [0, 1, 1, 2, 4, 5, 5]

    def test_fill_and_errors(self):
        h = EdgeHistogram(0.0, 1.0, 4)
        h.fill([0.1, 0.1, 0.6], [2.0, 1.0, 3.0])
        h.fill(1.5, 4.0)

        assert_allclose(h.contents, [3.0, 0.0, 3.0, 0.0])
        assert_allclose(h.squared_contents, [5.0, 0.0, 9.0, 0.0])
        assert h.bin_content(1) == pytest.approx(3.0)
        assert h.bin_error(1) == pytest.approx(np.sqrt(5.0))
        assert h.overflow == pytest.approx(4.0)
        assert h.underflow == 0.0
        assert h.entries == 4

    def test_reset(self):
        h = EdgeHistogram(0.0, 2.0, 10)
        h.fill(np.linspace(0, 2, 50))
        h.reset()
        assert h.entries == 0
        assert not np.any(h.contents)
        assert h.overflow == 0.0

    def test_edges(self):
        assert_allclose(EdgeHistogram(0.0, 1.5, 3).edges, [0.0, 0.5, 1.0, 1.5])

    @pytest.mark.parametrize("args", [(0.0, 1.0, 0), (1.0, 1.0, 4), (2.0, 1.0, 4)])
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            EdgeHistogram(*args)


class TestBinaryPartition:
    def test_enumeration_order(self):
        assert list(BinaryPartition(2)) == [(0, 0), (0, 1), (1, 0), (1, 1)]
        assert len(BinaryPartition(3)) == 8

    def test_serial_matches_position(self):
        for position, digits in enumerate(BinaryPartition(4)):
            assert BinaryPartition.serial(digits) == position

    def test_stepping(self):
        partition = BinaryPartition(3)
        seen = [partition.digits]
        while partition.next():
            seen.append(partition.digits)

        assert seen == list(BinaryPartition(3))
        # wrapped around
        assert partition.digits == (0, 0, 0)
        assert partition.digit(0) == 0

        partition.next()
        partition.reset()
        assert partition.digits == (0, 0, 0)

    def test_zero_dimension(self):
        assert list(BinaryPartition(0)) == [()]
        assert BinaryPartition(0).next() is False
