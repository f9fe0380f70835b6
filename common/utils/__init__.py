"""
Utility modules for the VPN system.
Includes configuration and logging.
"""

from common.utils.config import ConfigManager, TunnelSettings
from common.utils.logging_setup import setup_logging, SecretFilter

__all__ = [
    'ConfigManager',
    'TunnelSettings',
    'setup_logging',
    'SecretFilter'
]
