"""
Immutable agent settings.
"""
import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, TYPE_CHECKING

from diag_agent.core.errors import ConfigurationError

if TYPE_CHECKING:
    from diag_agent.config.config_manager import ConfigManager

DEFAULT_NAME = 'agent'
DEFAULT_CHECK_INTERVAL_MS = 10 * 1000
DEFAULT_FAIL_THRESHOLD = 3
DEFAULT_LONG_SLEEP_MS = 3600 * 1000
DEFAULT_LOCK_WINDOW_MS = 60 * 1000
DEFAULT_PROFILER_DURATION_MS = 100 * 1000
DEFAULT_PROFILER_MAX_DURATION_MS = 600 * 1000


@dataclass(frozen=True)
class AgentConfig:
    """
    Settings the agent is started with. Fixed for the lifetime of the agent.
    """
    host: str
    port: int
    secret: str
    name: str = DEFAULT_NAME
    check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS
    with_heartbeat: bool = False
    reconnect_fail_threshold: int = DEFAULT_FAIL_THRESHOLD
    reconnect_long_sleep_ms: int = DEFAULT_LONG_SLEEP_MS
    reconnect_lock_window_ms: int = DEFAULT_LOCK_WINDOW_MS
    profiler_default_duration_ms: int = DEFAULT_PROFILER_DURATION_MS
    profiler_max_duration_ms: int = DEFAULT_PROFILER_MAX_DURATION_MS
    profiler_lock_window_ms: int = DEFAULT_LOCK_WINDOW_MS
    heap_snapshot_dir: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.host, str) or not self.host:
            raise ConfigurationError("'host' must be a non-empty string.")
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise ConfigurationError(f"'port' must be an integer between 1 and 65535, got {self.port!r}.")
        if not isinstance(self.secret, str):
            raise ConfigurationError("'secret' must be a string.")
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("'name' must be a non-empty string.")
        if not isinstance(self.with_heartbeat, bool):
            raise ConfigurationError("'with_heartbeat' must be a boolean.")

        for field_name in ('check_interval_ms', 'reconnect_fail_threshold', 'reconnect_long_sleep_ms',
                           'reconnect_lock_window_ms', 'profiler_default_duration_ms',
                           'profiler_max_duration_ms', 'profiler_lock_window_ms'):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"'{field_name}' must be a non-negative integer, got {value!r}.")

        if self.profiler_default_duration_ms > self.profiler_max_duration_ms:
            raise ConfigurationError("'profiler_default_duration_ms' cannot exceed 'profiler_max_duration_ms'.")

    @property
    def agent_id(self) -> str:
        """Identity presented to the collector: ``<name>:<pid>``."""
        return f"{self.name}:{os.getpid()}"

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_dict(self, redact_secret: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact_secret and data['secret']:
            data['secret'] = '***'
        return data

    @classmethod
    def from_config_manager(cls, config: 'ConfigManager', **overrides: Any) -> 'AgentConfig':
        """
        Build the settings from a loaded configuration file.

        :param config: Loaded configuration
        :type config: ConfigManager
        :param overrides: Field values that take precedence over the file (None values are ignored)
        :return: Validated settings
        :rtype: AgentConfig
        :raises ConfigurationError: If a value is invalid
        """
        values = {
            'host': config.get('collector.host'),
            'port': config.get('collector.port'),
            'secret': config.get('collector.secret', ''),
            'name': config.get('collector.name', DEFAULT_NAME),
            'check_interval_ms': config.get('agent.check_interval_ms', DEFAULT_CHECK_INTERVAL_MS),
            'with_heartbeat': config.get('agent.with_heartbeat', False),
            'reconnect_fail_threshold': config.get('reconnect.fail_threshold', DEFAULT_FAIL_THRESHOLD),
            'reconnect_long_sleep_ms': config.get('reconnect.long_sleep_ms', DEFAULT_LONG_SLEEP_MS),
            'reconnect_lock_window_ms': config.get('reconnect.lock_window_ms', DEFAULT_LOCK_WINDOW_MS),
            'profiler_default_duration_ms': config.get('profiler.default_duration_ms', DEFAULT_PROFILER_DURATION_MS),
            'profiler_max_duration_ms': config.get('profiler.max_duration_ms', DEFAULT_PROFILER_MAX_DURATION_MS),
            'profiler_lock_window_ms': config.get('profiler.lock_window_ms', DEFAULT_LOCK_WINDOW_MS),
            'heap_snapshot_dir': config.get('heap_snapshot.dump_dir'),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
