from __future__ import annotations

import difflib
import functools
import importlib
import inspect
import logging
import pkgutil
import re
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Type, Union

from .base import BaseAggregator

logger = logging.getLogger(__name__)

DEFAULT_AGGREGATORS = ("countdom", "countrr", "dnssec", "nsstats")

_CAMEL_1 = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_2 = re.compile(r"([a-z0-9])([A-Z])")


@functools.lru_cache(maxsize=1024)
def _camel_to_snake(name: str) -> str:
    s1 = _CAMEL_1.sub(r"\1_\2", name)
    s2 = _CAMEL_2.sub(r"\1_\2", s1)
    return s2.lower()


def _default_alias_for(cls: Type[BaseAggregator]) -> str:
    name = cls.__name__
    if name.endswith("Aggregator"):
        name = name[: -len("Aggregator")]
    return _camel_to_snake(name)


def _normalize(alias: str) -> str:
    return alias.strip().lower().replace("-", "_")


def _iter_aggregator_modules(
    package_name: str = "zonestats.aggregators",
) -> Iterable[str]:
    pkg = importlib.import_module(package_name)
    for modinfo in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        yield modinfo.name


@functools.lru_cache(maxsize=8)
def discover_aggregators(
    package_name: str = "zonestats.aggregators",
) -> Dict[str, Type[BaseAggregator]]:
    """
    Discover aggregator classes by importing every module of a package.

    Inputs:
      - package_name (str): Package path to scan

    Outputs:
      - Dict[str, Type[BaseAggregator]]: normalized alias -> class

    Raises ImportError if a module import fails and ValueError on duplicate
    aliases.

    Example:
        >>> registry = discover_aggregators()
        >>> registry["nsstats"].__name__
        'NameserverStats'
    """
    registry: Dict[str, Type[BaseAggregator]] = {}

    for modname in _iter_aggregator_modules(package_name):
        try:
            module = importlib.import_module(modname)
        except ImportError:
            logger.error("Failed importing aggregator module %s", modname)
            raise

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if not issubclass(obj, BaseAggregator) or obj is BaseAggregator:
                continue

            claimed = set(_normalize(a) for a in obj.get_aliases())
            claimed.add(_normalize(_default_alias_for(obj)))

            for alias in claimed:
                if alias in registry and registry[alias] is not obj:
                    other = registry[alias]
                    raise ValueError(
                        f"Duplicate aggregator alias '{alias}' claimed by {obj.__module__}.{obj.__name__} "
                        f"and {other.__module__}.{other.__name__}"
                    )
                registry[alias] = obj

    return registry


def get_aggregator_class(
    identifier: str, registry: Dict[str, Type[BaseAggregator]] | None = None
) -> Type[BaseAggregator]:
    """
    Resolve identifier to an aggregator class.
    - If identifier contains a dot, treat as dotted import path "pkg.mod.Class".
    - Otherwise, treat as alias and resolve via registry.
    """
    ident = identifier.strip()
    if "." in ident:
        modname, _, classname = ident.rpartition(".")
        if not modname or not classname:
            raise ValueError(f"Invalid aggregator path '{identifier}'")
        module = importlib.import_module(modname)
        cls = getattr(module, classname)
        if not (inspect.isclass(cls) and issubclass(cls, BaseAggregator)):
            raise TypeError(f"{identifier} is not a BaseAggregator subclass")
        return cls

    reg = registry or discover_aggregators()
    key = _normalize(ident)
    try:
        return reg[key]
    except KeyError:
        suggestions = difflib.get_close_matches(key, list(reg.keys()), n=3)
        raise KeyError(
            f"Unknown aggregator alias '{identifier}'. "
            f"Known aliases: {', '.join(sorted(reg.keys()))}. "
            f"Suggestions: {suggestions}"
        ) from None


def load_aggregators(
    specs: Sequence[Union[str, Mapping[str, Any]]] | None,
    *,
    zone: str,
    resolver=None,
    defaults: Mapping[str, Any] | None = None,
) -> List[BaseAggregator]:
    """Brief: Instantiate aggregators from config entries.

    Inputs:
      - specs: list of aliases/dotted paths, or mappings
        ``{module: <alias>, config: {...}}``; None uses DEFAULT_AGGREGATORS.
      - zone: zone apex passed to every aggregator.
      - resolver: shared Resolver passed to every aggregator.
      - defaults: config values applied to every aggregator before its own
        ``config`` mapping.

    Outputs:
      - list of aggregator instances in config order.
    """

    entries = list(DEFAULT_AGGREGATORS if specs is None else specs)
    out: List[BaseAggregator] = []
    for entry in entries:
        if isinstance(entry, str):
            module, own_cfg = entry, {}
        elif isinstance(entry, Mapping):
            module = str(entry.get("module", ""))
            own_cfg = dict(entry.get("config") or {})
        else:
            raise ValueError(f"Invalid aggregator entry {entry!r}")
        cls = get_aggregator_class(module)
        cfg = {**dict(defaults or {}), **own_cfg}
        out.append(cls(zone=zone, resolver=resolver, **cfg))
    logger.debug("Loaded aggregators: %s", [type(a).__name__ for a in out])
    return out
