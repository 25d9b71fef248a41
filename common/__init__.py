"""
Shared configuration, error taxonomy and store wiring
"""

from .config import Config, configure_logging
from .errors import Result, WalletError
from .store import create_store

__all__ = ['Config', 'configure_logging', 'Result', 'WalletError', 'create_store']
