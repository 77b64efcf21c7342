"""
Configuration Loader.

Responsible for reading the config.yaml file and filling in defaults
for every section the session reads.
"""
import copy
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Union

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    'logging': {'level': 'INFO'},
    'mqtt': {
        'use_lts': False,
        'use_443_port': False,
        'log_connect': True,
        'clean_session': True,
        'use_tls': True,
        'ca_certs': None,
        'keepalive': 60,
        'connect_timeout': 10.0,
    },
    'credentials': {'token_file': 'token.jwt', 'lifetime': 3600},
    'backoff': {'minimum': 1.0, 'factor': 2.5, 'jitter': 0.5, 'maximum': 60.0},
    'driver': {'tick_interval': 0.1, 'telemetry_interval': 0},
}


def with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns a copy of `config` where every known section is completed
    with DEFAULTS. Unknown sections are kept as they are.
    """
    merged = copy.deepcopy(DEFAULTS)
    for section, values in (config or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def load_config(config_path: Union[str, Path] = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return with_defaults({})

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {path}")
            return with_defaults(config)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config file: {e}")
        raise
