"""Cellfoam configuration management / utilities.

The package defaults (logging, progress bars and the foam options) live in ``bin/config.yaml`` and are exposed
through :py:data:`fmparams`. Values may be changed on disk with :py:meth:`YAMLConfiguration.set_param` or, for a
whole block of values, :py:meth:`YAMLConfiguration.update`; the file is rewritten in round-trip mode so that its
comments survive.
"""
import operator
import os
import pathlib as pt
from functools import reduce
from typing import Any, Collection, Iterable, Mapping, MutableMapping

import ruamel.yaml

from cellfoam.utilities.types import AttrDict

config_directory = os.path.join(pt.Path(__file__).parents[1], "bin", "config.yaml")
""" str: The system directory where the ``cellfoam`` configuration is stored.

The underlying ``.yaml`` file may be altered by the user to set configuration values.
"""

yaml = ruamel.yaml.YAML()


def _as_keys(name: str | Collection[str]) -> list[str]:
    # "foam.n_bins" and ("foam", "n_bins") address the same entry
    return name.split(".") if isinstance(name, str) else list(name)


class YAMLConfiguration:
    """YAML configuration file, loaded lazily and addressed by nested keys.

    Parameters
    ----------
    path: str or :py:class:`pathlib.Path`
        The path to the ``.yaml`` file.
    """

    def __init__(self, path: pt.Path | str):
        self.path: pt.Path = pt.Path(path)
        # :py:class:`pathlib.Path`: The path to the underlying yaml file.
        self._config: AttrDict | None = None

    def __getitem__(self, item: str | tuple[str, ...]) -> Any:
        if isinstance(item, tuple):
            return getFromDict(self.config, item)
        return self.config[item]

    @property
    def config(self) -> AttrDict:
        """The configuration as nested attribute dictionaries (loaded on first access)."""
        if self._config is None:
            self._config = AttrDict(self.load())

        return self._config

    def load(self) -> dict:
        """Read the configuration dictionary from disk."""
        try:
            with open(self.path, "r") as cf:
                return yaml.load(cf)
        except FileNotFoundError as er:
            raise FileNotFoundError(f"Couldn't find the configuration file at {self.path}! Error = {er!r}")

    def reload(self):
        """Forget the cached configuration; the next access reads the file again."""
        self._config = None

    def set_param(self, name: str | Collection[str], value: Any):
        """Set a single configuration value and write it to disk.

        Parameters
        ----------
        name: str or list of str
            The dotted name (``"foam.n_bins"``) or the key path of the entry.
        value:
            The new value.
        """
        keys = _as_keys(name)
        self.update(keys[:-1], {keys[-1]: value})

    def update(self, prefix: str | Collection[str], values: Mapping[str, Any]):
        """Set several values of one (possibly new) section and write them to disk in one pass.

        Parameters
        ----------
        prefix: str or list of str
            The dotted name or key path of the section; missing sections are created.
        values: dict
            The values to set in the section.
        """
        raw = self.load()
        section = ensureInDict(raw, _as_keys(prefix) if prefix else [])
        for key, value in values.items():
            section[key] = value

        with open(self.path, "w") as cf:
            yaml.dump(raw, cf)
        self.reload()


fmparams: YAMLConfiguration = YAMLConfiguration(config_directory)
""":py:class:`YAMLConfiguration`: The ``cellfoam`` configuration object."""


def getFromDict(dataDict: Mapping, mapList: Iterable[str]) -> Any:
    """Fetch an object from a nested dictionary using a list of keys.

    Parameters
    ----------
    dataDict: dict
        The data dictionary to search.
    mapList: list
        The list of keys to follow.

    Returns
    -------
    Any
        The output value.
    """
    return reduce(operator.getitem, mapList, dataDict)


def ensureInDict(dataDict: MutableMapping, mapList: Iterable[str]) -> MutableMapping:
    """Follow a list of keys through a nested dictionary, creating the missing levels.

    Returns the innermost dictionary.
    """
    return reduce(lambda d, key: d.setdefault(key, {}), mapList, dataDict)
