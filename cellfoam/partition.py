"""Enumeration of binary digit vectors, i.e. the vertices of a unit hypercube."""
from itertools import product
from typing import Iterator


class BinaryPartition:
    """Enumerates the ``2**ndim`` binary digit vectors of length ``ndim`` in lexicographic order.

    The first digit is the most significant one, so that the position of a digit vector in the enumeration
    is its value read as a binary number: ``(0, 0), (0, 1), (1, 0), (1, 1)`` for ``ndim = 2``.

    The object can be iterated over directly or stepped through with :py:meth:`reset` / :py:meth:`next`,
    which is convenient when the enumeration is interleaved with other work.
    """

    def __init__(self, ndim: int):
        if ndim < 0:
            raise ValueError(f"Partition dimension must be non-negative, got {ndim}.")
        self.ndim = ndim
        self._digits = [0] * ndim

    def __len__(self) -> int:
        return 2**self.ndim

    def __iter__(self) -> Iterator[tuple[int, ...]]:
        return iter(product((0, 1), repeat=self.ndim))

    def reset(self):
        """Return to the all-zero digit vector."""
        self._digits = [0] * self.ndim

    def digit(self, k: int) -> int:
        """Digit ``k`` of the current vector."""
        return self._digits[k]

    @property
    def digits(self) -> tuple[int, ...]:
        return tuple(self._digits)

    def next(self) -> bool:
        """Advance to the next digit vector.

        Returns
        -------
        bool
            ``False`` once the enumeration wraps around to the all-zero vector, ``True`` otherwise.
        """
        for k in range(self.ndim - 1, -1, -1):
            if self._digits[k] == 0:
                self._digits[k] = 1
                return True
            self._digits[k] = 0
        return False

    @staticmethod
    def serial(digits: tuple[int, ...]) -> int:
        """Position of a digit vector in the enumeration."""
        value = 0
        for d in digits:
            value = 2 * value + d
        return value
