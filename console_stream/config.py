"""
Configuration Loader.

This module initializes the global configuration object (`config`) used
throughout the client. It leverages `yacs` to provide a hierarchical,
dot-accessible configuration structure defined in `console_stream.core_config`.

Usage:
    from console_stream.config import config
    print(config.STREAM.BASE_URL)
"""

import logging
import os

from console_stream.core_config import get_cfg_defaults

CONFIG_FILE_ENV = "CONSOLE_STREAM_CONFIG"

logger = logging.getLogger(__name__)

# Load default configuration
config = get_cfg_defaults()

# Override from a YAML file when one is named in the environment
_user_config_path = os.environ.get(CONFIG_FILE_ENV, "").strip()
if _user_config_path:
    if os.path.exists(_user_config_path):
        config.merge_from_file(_user_config_path)
    else:
        logger.warning("Config file %s does not exist, using defaults", _user_config_path)

# Freeze config to prevent accidental changes during runtime.
config.freeze()
