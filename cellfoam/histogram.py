"""Fixed-range weighted 1D histograms used during cell exploration."""
import numpy as np
from numpy.typing import ArrayLike, NDArray


class EdgeHistogram:
    """Weighted histogram over ``[xmin, xmax)`` with underflow and overflow bins.

    The bins are numbered as in the usual HEP convention: bin ``0`` is the underflow, bins ``1 .. n_bins``
    cover the range and bin ``n_bins + 1`` is the overflow. For every bin the sum of the weights and the sum
    of the squared weights are kept, so that :py:meth:`bin_error` returns the usual ``sqrt(sum w^2)``.

    Parameters
    ----------
    xmin: float
        Lower edge of the first regular bin.
    xmax: float
        Upper edge of the last regular bin.
    n_bins: int
        Number of regular bins.
    """

    def __init__(self, xmin: float, xmax: float, n_bins: int):
        if n_bins < 1:
            raise ValueError(f"A histogram needs at least one bin, got {n_bins}.")
        if not xmax > xmin:
            raise ValueError(f"Invalid histogram range [{xmin}, {xmax}).")

        self.xmin, self.xmax, self.n_bins = float(xmin), float(xmax), int(n_bins)
        self._sumw = np.zeros(self.n_bins + 2)
        self._sumw2 = np.zeros(self.n_bins + 2)
        self.entries = 0

    def __repr__(self):
        return f"<EdgeHistogram [{self.xmin}, {self.xmax}) bins={self.n_bins} entries={self.entries}>"

    def reset(self):
        """Clear every bin."""
        self._sumw[:] = 0.0
        self._sumw2[:] = 0.0
        self.entries = 0

    def find_bin(self, x: ArrayLike) -> NDArray[np.int64]:
        """Bin number(s) of ``x``, underflow and overflow included."""
        x = np.asarray(x, dtype=np.float64)
        idx = np.floor((x - self.xmin) / (self.xmax - self.xmin) * self.n_bins).astype(np.int64) + 1
        return np.clip(idx, 0, self.n_bins + 1)

    def fill(self, x: ArrayLike, w: ArrayLike = 1.0):
        """Add one or many weighted entries.

        Parameters
        ----------
        x: float or array-like
            Position(s) of the entries.
        w: float or array-like
            Weight(s) of the entries; broadcast against ``x``.
        """
        x = np.atleast_1d(np.asarray(x, dtype=np.float64))
        w = np.broadcast_to(np.asarray(w, dtype=np.float64), x.shape)
        idx = self.find_bin(x)
        self._sumw += np.bincount(idx, weights=w, minlength=self.n_bins + 2)
        self._sumw2 += np.bincount(idx, weights=w * w, minlength=self.n_bins + 2)
        self.entries += x.size

    def bin_content(self, i: int) -> float:
        """Sum of the weights in bin ``i`` (``0`` underflow, ``n_bins + 1`` overflow)."""
        return float(self._sumw[i])

    def bin_error(self, i: int) -> float:
        """Square root of the sum of squared weights in bin ``i``."""
        return float(np.sqrt(self._sumw2[i]))

    @property
    def contents(self) -> NDArray[np.float64]:
        """Sums of the weights of the regular bins, shape ``(n_bins,)``."""
        return self._sumw[1:-1].copy()

    @property
    def squared_contents(self) -> NDArray[np.float64]:
        """Sums of the squared weights of the regular bins, shape ``(n_bins,)``."""
        return self._sumw2[1:-1].copy()

    @property
    def underflow(self) -> float:
        return float(self._sumw[0])

    @property
    def overflow(self) -> float:
        return float(self._sumw[-1])

    @property
    def edges(self) -> NDArray[np.float64]:
        return np.linspace(self.xmin, self.xmax, self.n_bins + 1)
