"""
flowdesk config package public API.

Purpose
- Export config loading/validation entrypoints and public error types.
"""

from flowdesk.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from flowdesk.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    FlowdeskConfig,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "FlowdeskConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "merge_config",
    "validate_config",
]
