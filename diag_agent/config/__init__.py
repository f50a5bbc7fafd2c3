"""
Configuration modules for the diagnostic agent.
"""
from .agent_config import AgentConfig
from .config_manager import ConfigManager

__all__ = [
    'AgentConfig',
    'ConfigManager'
]
