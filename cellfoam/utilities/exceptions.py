"""Exception hierarchy of the foam sampler and warning redirection utilities.

All of the errors below are unrecoverable from the point of view of a :py:class:`~cellfoam.foam.Foam`
object; the only retry logic lives in :py:func:`~cellfoam.foam.create_foam`, which retries a failed growth
(:py:class:`FoamGrowthError`) exactly once.
"""
import warnings

from tqdm.auto import tqdm


class FoamError(Exception):
    """Base class for every error raised by the foam sampler."""

    pass


class FoamConfigurationError(FoamError):
    """Raised when the foam options are invalid (zero dimension, too small cell budget, ...)."""

    pass


class FoamGeometryError(FoamError):
    """Raised when the region bookkeeping of the cells is inconsistent."""

    pass


class FoamConsistencyError(FoamGeometryError):
    """Collection of every violation found by a consistency check of the cell tree."""

    def __init__(self, message, exceptions):
        super().__init__(message)
        self.exceptions = exceptions

    def __str__(self):
        exception_messages = "\n".join(f"- {type(e).__name__}: {e}" for e in self.exceptions)
        return f"{self.args[0]}:\n{exception_messages}"


class FoamGrowthError(FoamError):
    """Raised when the growth of the foam fails because the density is degenerate over a cell."""

    pass


class FoamIndexError(FoamError, IndexError):
    """Raised when a cell or vertex index falls outside of the allocated storage."""

    pass


class FoamDensityError(FoamError, ValueError):
    """Raised when the density callback returns a negative or NaN value."""

    pass


class tqdmWarningRedirector:
    """
    A context manager to redirect all warnings and log them through tqdm.write()
    so that they don't interfere with the progress bar.
    """

    def __enter__(self):
        # Backup the original warnings.showwarning
        self._original_showwarning = warnings.showwarning

        # Override the warning display to use tqdm.write
        warnings.showwarning = self._tqdm_warning_handler
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        # Restore the original warning display function
        warnings.showwarning = self._original_showwarning

    @staticmethod
    def _tqdm_warning_handler(message, category, filename, lineno, file=None, line=None):
        """
        Custom handler to redirect warnings through tqdm.write().
        """
        tqdm.write(f"WARNING: {message}, in {filename}, line {lineno}")
