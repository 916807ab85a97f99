"""Configuration layering and semantic checks for the zonestats CLI.

Brief:
  The effective configuration is built from up to four layers, lowest
  precedence first:
    - ``~/.zonestats`` (optional YAML)
    - ``./.zonestats`` (optional YAML)
    - the file named by ``--config``
    - command-line flags
  Mappings (influx, limits, logging) merge key by key, scalars and lists in
  a higher layer replace lower ones, and ``dryrun`` is true as soon as any
  layer sets it.

Inputs:
  - YAML config files and an argparse namespace.

Outputs:
  - A merged config dict validated by validate_config() and normalized by
    check_configuration().
"""

from __future__ import annotations

import argparse
import copy
import logging
import os
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

from ..resolver import DEFAULT_PROBE_LIMIT, DEFAULT_RESOLVE_LIMIT, DEFAULT_TIMEOUT, system_resolvers
from .config_schema import ConfigError

logger = logging.getLogger(__name__)

DOTFILE_NAME = ".zonestats"
DEFAULT_PORT = 53
DEFAULT_INFLUX_PORT = 8086
DRYRUN_INFLUX_SERVER = "localhost"
DRYRUN_INFLUX_DATABASE = "zonestats"

_NESTED_SECTIONS = ("influx", "limits", "logging")


def load_config_file(path: str, *, required: bool = True) -> Dict[str, Any]:
    """Brief: Read one YAML config file into a dict.

    Inputs:
      - path: file path (``~`` is expanded).
      - required: when False a missing file yields an empty mapping.

    Outputs:
      - dict: parsed mapping; an empty file gives {}.

    Raises:
      - ConfigError: unreadable file, YAML syntax error or non-mapping
        top-level document.
    """

    full = os.path.expanduser(path)
    try:
        with open(full, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        if required:
            raise ConfigError(f"Config file {path} does not exist") from None
        return {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    logger.debug("Loaded config layer %s", full)
    return data


def default_config_paths(
    home: Optional[str] = None, cwd: Optional[str] = None
) -> List[str]:
    """Brief: Home directory dotfile first, then the working directory one."""

    home_dir = home if home is not None else os.path.expanduser("~")
    cwd_dir = cwd if cwd is not None else os.getcwd()
    return [os.path.join(home_dir, DOTFILE_NAME), os.path.join(cwd_dir, DOTFILE_NAME)]


def merge_layers(layers: Iterable[Optional[Dict[str, Any]]]) -> Dict[str, Any]:
    """Brief: Merge config layers, later layers taking precedence.

    Inputs:
      - layers: mappings ordered lowest to highest precedence; None entries
        and None values are ignored.

    Outputs:
      - dict: merged configuration. ``dryrun`` is the OR of every layer.

    Example:
      >>> merge_layers([{"dryrun": True, "port": 53}, {"dryrun": False, "port": 5353}])
      {'dryrun': True, 'port': 5353}
    """

    merged: Dict[str, Any] = {}
    dryrun = False
    seen_dryrun = False
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if value is None:
                continue
            if key == "dryrun":
                seen_dryrun = True
                dryrun = dryrun or bool(value)
                continue
            if key in _NESTED_SECTIONS and isinstance(value, dict):
                section = dict(merged.get(key) or {})
                section.update({k: v for k, v in value.items() if v is not None})
                merged[key] = section
                continue
            merged[key] = copy.deepcopy(value)
    if seen_dryrun:
        merged["dryrun"] = dryrun
    return merged


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Brief: Convert parsed command-line flags into a config layer.

    Inputs:
      - args: namespace produced by zonestats.main.build_parser().

    Outputs:
      - dict with only the options given on the command line.
    """

    layer: Dict[str, Any] = {
        "zone": getattr(args, "zone", None),
        "infile": getattr(args, "infile", None),
        "axfr": getattr(args, "axfr", None),
        "port": getattr(args, "port", None),
        "resolvers": getattr(args, "resolver", None) or None,
    }
    if getattr(args, "dryrun", False):
        layer["dryrun"] = True

    influx = {
        "server": getattr(args, "influx_server", None),
        "port": getattr(args, "influx_port", None),
        "database": getattr(args, "influx_db", None),
        "user": getattr(args, "influx_user", None),
        "password": getattr(args, "influx_password", None),
    }
    influx = {k: v for k, v in influx.items() if v is not None}
    if influx:
        layer["influx"] = influx

    level = getattr(args, "log_level", None)
    if level:
        layer["logging"] = {"level": level}
    return {k: v for k, v in layer.items() if v is not None}


def load_configuration(
    config_file: Optional[str] = None,
    cli_layer: Optional[Dict[str, Any]] = None,
    *,
    use_defaults: bool = True,
    home: Optional[str] = None,
    cwd: Optional[str] = None,
) -> Dict[str, Any]:
    """Brief: Read every config layer and merge them.

    Inputs:
      - config_file: explicit ``--config`` file (must exist when given).
      - cli_layer: output of cli_overrides().
      - use_defaults: read the home and working directory dotfiles.
      - home / cwd: directories to look in (tests point them at tmp_path).

    Outputs:
      - merged, not yet validated, configuration dict.
    """

    layers: List[Dict[str, Any]] = []
    if use_defaults:
        for path in default_config_paths(home, cwd):
            layers.append(load_config_file(path, required=False))
    if config_file:
        layers.append(load_config_file(config_file))
    layers.append(cli_layer or {})
    return merge_layers(layers)


def check_configuration(
    cfg: Dict[str, Any],
    *,
    find_resolvers: Callable[[], List[str]] = system_resolvers,
) -> Dict[str, Any]:
    """Brief: Apply semantic checks and defaults to a schema-valid config.

    Inputs:
      - cfg: merged configuration (not modified).
      - find_resolvers: fallback used when no resolvers are configured.

    Outputs:
      - New dict with ``source`` ("file" or "axfr"), ``port``, ``resolvers``,
        ``probe``, ``dryrun`` and complete ``influx``/``limits``/``logging``
        sections.

    Raises:
      - ConfigError: any violated rule; nothing has been processed yet.
    """

    out = copy.deepcopy(cfg)

    zone = str(out.get("zone") or "").strip()
    if not zone:
        raise ConfigError("zone must be given")
    out["zone"] = zone

    infile = out.get("infile") or None
    axfr = out.get("axfr") or None
    if infile and axfr:
        raise ConfigError("Only one of infile and axfr can be given.")
    if not infile and not axfr:
        raise ConfigError("One of infile and axfr must be given.")
    out["source"] = "file" if infile else "axfr"

    port = int(out.get("port") or DEFAULT_PORT)
    if not 1 <= port <= 65535:
        raise ConfigError(f"port must be between 1 and 65535, got {port}")
    out["port"] = port

    resolvers = [str(r) for r in (out.get("resolvers") or []) if str(r).strip()]
    if not resolvers:
        resolvers = find_resolvers()
    if not resolvers:
        raise ConfigError("No resolver(s) found.")
    out["resolvers"] = resolvers

    out["dryrun"] = bool(out.get("dryrun", False))
    out["probe"] = bool(out.get("probe", True))

    influx = dict(out.get("influx") or {})
    influx.setdefault("port", DEFAULT_INFLUX_PORT)
    influx.setdefault("scheme", "http")
    if bool(influx.get("user")) != bool(influx.get("password")):
        raise ConfigError("Influx user and password must be given (not only one).")
    if not out["dryrun"]:
        if not influx.get("server"):
            raise ConfigError("Influx server address must be given.")
        if not influx.get("database"):
            raise ConfigError("Influx database name must be given.")
    else:
        influx["server"] = influx.get("server") or DRYRUN_INFLUX_SERVER
        influx["database"] = influx.get("database") or DRYRUN_INFLUX_DATABASE
    out["influx"] = influx

    limits = dict(out.get("limits") or {})
    limits.setdefault("resolve", DEFAULT_RESOLVE_LIMIT)
    limits.setdefault("probe", DEFAULT_PROBE_LIMIT)
    limits.setdefault("timeout", DEFAULT_TIMEOUT)
    for key in ("resolve", "probe", "workers", "in_flight"):
        if key in limits and int(limits[key]) < 1:
            raise ConfigError(f"limits.{key} must be >= 1")
    out["limits"] = limits

    out["logging"] = dict(out.get("logging") or {})
    return out
