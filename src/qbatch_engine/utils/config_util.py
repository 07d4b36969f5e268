import logging.config
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

MASK = "***MASKED***"

# Keys whose values never reach the logs (matched as substrings, case-insensitive).
SENSITIVE_MARKERS = ("token", "password", "secret", "api_key", "credential")

_ENV_REF = re.compile(r"\$\{(?P<name>[A-Z0-9_]+)(?:,\s*(?P<default>[^}]+))?\}")

ENGINE_LOGGER = "qbatch_engine"


def is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_MARKERS)


def mask_sensitive_info(config: Any) -> Any:  # noqa: ANN401
    """Copy of `config` safe for logging.

    Provider credentials may sit anywhere in the engine configuration, so
    mappings and lists are walked recursively and the value of every key
    that looks like a credential is replaced with `MASK`.
    """
    if isinstance(config, Mapping):
        return {
            key: MASK if is_sensitive(str(key)) else mask_sensitive_info(value)
            for key, value in config.items()
        }
    if isinstance(config, list):
        return [mask_sensitive_info(item) for item in config]
    return config


def setup_logging(logging_cfg: dict, level: str | None = None) -> None:
    """Apply a `logging.config.dictConfig` configuration.

    Args:
        logging_cfg: Parsed logging configuration.
        level: Optional level that overrides the configured level of the
            engine logger.

    Raises:
        TypeError: If the configuration is not a dictionary.

    """
    if not isinstance(logging_cfg, dict):
        message = (
            f"logging configuration must be a dict, got {type(logging_cfg).__name__}"
        )
        raise TypeError(message)
    if level is not None:
        loggers = logging_cfg.setdefault("loggers", {})
        loggers.setdefault(ENGINE_LOGGER, {})["level"] = level.upper()
    logging.config.dictConfig(logging_cfg)


def expand_env(text: str, environ: Mapping[str, str] | None = None) -> str:
    """Substitute `${VAR}` and `${VAR, default}` references in raw YAML text.

    A set variable is inserted as is. Otherwise the default is inserted
    literally, so YAML types it afterwards (`0.5` stays a float, `false` a
    bool). A reference without default becomes an empty string.
    """
    env = os.environ if environ is None else environ

    def _substitute(match: re.Match) -> str:
        name, default = match.group("name"), match.group("default")
        if name in env:
            return env[name]
        if default is not None:
            return default
        return '""'

    return _ENV_REF.sub(_substitute, text)


def load_config(
    config_path: str | Path, environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Read a YAML file after environment substitution.

    Returns:
        The parsed mapping; an empty file gives an empty dict.

    """
    text = Path(config_path).read_text(encoding="utf-8")
    return yaml.safe_load(expand_env(text, environ)) or {}
