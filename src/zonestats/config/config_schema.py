"""JSON Schema-based validation for zonestats YAML configuration.

The merged configuration mapping (dotfiles, --config file and CLI flags) is
checked against ``assets/config-schema.json`` before any work starts.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)

UNKNOWN_KEY_POLICIES = ("ignore", "warn", "error")


class ConfigError(ValueError):
    """Brief: The configuration is invalid; the run is aborted before processing."""

    pass


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Inputs:
      - None.

    Outputs:
      - Path to ``assets/config-schema.json``, searched upwards from this
        module (the packaged copy lives in ``zonestats/assets``).
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[1] / "assets" / "config-schema.json"


def load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional description of where the config came from.

    Outputs:
      - One header line plus one ``- <path>: <message>`` line per error.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def _split_extra_property_errors(
    errors: List[ValidationError],
) -> tuple[List[ValidationError], List[ValidationError]]:
    extra: List[ValidationError] = []
    other: List[ValidationError] = []
    for err in errors:
        if getattr(err, "validator", None) in {
            "additionalProperties",
            "unevaluatedProperties",
        }:
            extra.append(err)
        else:
            other.append(err)
    return extra, other


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
    unknown_keys: str = "warn",
) -> None:
    """Brief: Validate a merged configuration mapping against the JSON Schema.

    Inputs:
      - cfg: merged configuration mapping.
      - schema_path: explicit schema file; defaults to get_default_schema_path().
      - config_path: description of the config origin, used in messages.
      - unknown_keys: "ignore", "warn" (default, log and continue) or "error"
        (treat keys the schema does not describe as fatal).

    Outputs:
      - None on success.

    Raises:
      - ConfigError: schema violations, an unreadable schema or an unknown
        key under the "error" policy.

    Example:
      >>> validate_config({"zone": "se", "infile": "se.zone", "dryrun": True})
    """

    if unknown_keys not in UNKNOWN_KEY_POLICIES:
        raise ConfigError(
            f"unknown_keys policy must be one of {UNKNOWN_KEY_POLICIES}, got {unknown_keys!r}"
        )

    effective_schema_path = schema_path or get_default_schema_path()
    try:
        schema = load_schema(effective_schema_path)
        validator = Draft202012Validator(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        raise ConfigError(
            f"Cannot load configuration schema {effective_schema_path}: {exc}"
        ) from exc

    all_errors = sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path])
    if not all_errors:
        return None

    extra_errors, other_errors = _split_extra_property_errors(all_errors)
    if other_errors:
        raise ConfigError(
            _format_errors(other_errors + extra_errors, config_path=config_path)
        )

    message = _format_errors(extra_errors, config_path=config_path)
    if unknown_keys == "error":
        raise ConfigError(message)
    if unknown_keys == "warn":
        logger.warning(message)
    return None
