"""Configuration for SOM species delimitation.

Use get_delimitation_config() to access the shared configuration manager.
"""

from .delimitation_config import (
    DelimitationConfig,
    DelimitationConfigManager,
    get_delimitation_config,
    reset_delimitation_config
)

__all__ = [
    'DelimitationConfig',
    'DelimitationConfigManager',
    'get_delimitation_config',
    'reset_delimitation_config'
]
