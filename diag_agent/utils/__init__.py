"""
Utility functions for the diagnostic agent.
"""
from diag_agent.utils.logger import get_logger, setup_logger

__all__ = [
    'get_logger',
    'setup_logger'
]
