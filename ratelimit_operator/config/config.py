"""
Load the operator-wide config at import time, validate it, and apply the
initial log configuration from it
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from ..exceptions import ConfigError
from ..log_format import RateLimiterJsonFormatter
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)


def _load_yaml(file_name: str, override_env_vars: bool) -> aconfig.Config:
    return aconfig.Config.from_yaml(
        os.path.join(_CONFIG_DIR, file_name),
        override_env_vars=override_env_vars,
    )


# Defaults from config.yaml, each overridable by an env var of the upper-cased
# key name
library_config = _load_yaml("config.yaml", override_env_vars=True)

# Validation rules are fixed
validation_config = _load_yaml("config_validation.yaml", override_env_vars=False)

invalid_params = get_invalid_params(library_config, validation_config)
if invalid_params:
    raise ConfigError(f"Invalid operator config values: {invalid_params}")

alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter=RateLimiterJsonFormatter() if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)
