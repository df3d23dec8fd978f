"""Special types and type hinting utilities."""
from numbers import Number
from typing import Any, Callable, Collection, Iterable, Mapping

import numpy as np
from more_itertools import always_iterable
from unyt import Unit, unyt_quantity

try:
    from typing import Self  # noqa
except ImportError:
    from typing_extensions import Self as Self  # noqa


MaybeUnitScalar = unyt_quantity | Number | tuple
PRNG = int | np.random.Generator | np.random.RandomState | None


class AttrDict(dict):
    """Attribute accessible dictionary."""

    def __init__(self, mapping: Mapping):
        super(AttrDict, self).__init__(mapping)
        self.__dict__ = self

        for key in self.keys():
            self[key] = self.__class__.from_nested_dict(self[key])

    @classmethod
    def from_nested_dict(cls, data: Any) -> Self:
        """Construct nested AttrDicts from nested dictionaries."""
        if not isinstance(data, dict):
            return data
        else:
            return AttrDict({key: cls.from_nested_dict(data[key]) for key in data})


class Registry:
    """Registry utility class."""

    def __init__(self):
        self._mapping = AttrDict(
            {}
        )  # This is an empty attribute dict that contains the registry objects.

    def __getattr__(self, name: str) -> Any:
        try:
            return super().__getattribute__(name)
        except AttributeError:
            return getattr(self._mapping, name).obj

    def __getitem__(self, name: str) -> Any:
        return self._mapping[name].obj

    def __contains__(self, name: str) -> bool:
        return name in self._mapping

    def __str__(self):
        return f"Registry[{len(self._mapping)} items]"

    def __repr__(self):
        return self.__str__()

    @property
    def meta(self):
        return self._mapping

    def register(self, name: str, obj: Any, overwrite: bool = False, **kwargs):
        """Register an entity in the registry.

        Parameters
        ----------
        name: str
            The name of the entity to register.
        obj: Any
            The object to register.
        overwrite: bool
            Allow the registration to overwrite existing entries.
        kwargs:
            Additional metadata to associate with the registered object.
        """
        from types import SimpleNamespace

        # Check that the overwriting is valid.
        if name in self._mapping:
            assert (
                overwrite
            ), f"Cannot set {name} in {self} because overwrite = False and it is already registered."

        self._mapping[name] = SimpleNamespace(obj=obj, **kwargs)

    def unregister(self, name: str):
        """Unregister an entity from the registry.

        Parameters
        ----------
        name: str
            The object to remove from the registry.
        """
        del self._mapping[name]

    def autoregister(self, **meta) -> Callable[[Callable], Callable]:
        """Decorator for registration of objects at interpretation time.

        Parameters
        ----------
        **meta:
            Additional meta-data to attach to the registry for the specified item.
        """

        def _decorator(function: Callable) -> Callable:
            self.register(function.__name__, function, **meta)

            return function

        return _decorator

    def keys(self) -> Iterable[Any]:
        return self._mapping.keys()

    def values(self) -> Iterable[Any]:
        return self._mapping.values()

    def items(self) -> Iterable[tuple[Any, Any]]:
        return self._mapping.items()


def parse_prng(prng: PRNG) -> np.random.Generator | np.random.RandomState:
    """Coerce a seed / generator specification into a random generator.

    Parameters
    ----------
    prng: int, :py:class:`numpy.random.Generator`, :py:class:`numpy.random.RandomState` or None
        If an integer (or ``None``), a new :py:class:`numpy.random.Generator` is seeded with it. Generator
        objects are returned unchanged so that the caller's stream is shared.

    Returns
    -------
    :py:class:`numpy.random.Generator` or :py:class:`numpy.random.RandomState`
        The random generator. Both expose ``random(size)``, which is all the foam needs.
    """
    if isinstance(prng, (np.random.Generator, np.random.RandomState)):
        return prng
    elif prng is None or isinstance(prng, (int, np.integer)):
        return np.random.default_rng(prng)
    else:
        raise TypeError(f"Cannot interpret {prng!r} as a random generator or seed.")


def ensure_ytquantity(x: MaybeUnitScalar, default_units: Unit | str) -> unyt_quantity:
    """Ensure that an input ``x`` is a unit-ed quantity with the expected units.

    Parameters
    ----------
    x: Any
        The value to enforce units on; a bare number is assumed to be in ``default_units``, a tuple is read as
        ``(value, unit)``.
    default_units: Unit
        The unit expected / to be applied if missing.

    Returns
    -------
    unyt_quantity
        The corresponding quantity with correct units.
    """
    if isinstance(x, unyt_quantity):
        return unyt_quantity(x.v, x.units).in_units(default_units)
    elif isinstance(x, tuple):
        return unyt_quantity(x[0], x[1]).in_units(default_units)
    else:
        return unyt_quantity(x, default_units)


def ensure_list(x: Collection) -> list:
    """Convert generic iterable to list."""
    return list(always_iterable(x))
