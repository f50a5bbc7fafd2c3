"""
Main entry point for the diagnostic agent.
This script handles command-line arguments for running the agent and
checking its configuration.
"""
import argparse
import json
import signal
import sys
from typing import Any, Dict, Optional

from diag_agent.config import AgentConfig, ConfigManager
from diag_agent.core import Agent
from diag_agent.core.errors import ConfigurationError
from diag_agent.utils.logger import ROOT_LOGGER_NAME, setup_logger, get_logger
from diag_agent.version import __app_name__, __version__

logger = get_logger("diag_agent.main")


def _load_config_manager(args: argparse.Namespace) -> ConfigManager:
    """Loads the config file, or builds the configuration from arguments when no file is given."""
    if args.config:
        return ConfigManager(config_path=args.config)

    collector: Dict[str, Any] = {
        key: value for key, value in
        (('host', args.host), ('port', args.port), ('secret', args.secret), ('name', args.name))
        if value is not None
    }
    return ConfigManager(config_data={"collector": collector})


def _build_agent_config(args: argparse.Namespace, config_manager: ConfigManager) -> AgentConfig:
    with_heartbeat: Optional[bool] = True if args.heartbeat else None
    return AgentConfig.from_config_manager(
        config_manager,
        host=args.host,
        port=args.port,
        secret=args.secret,
        name=args.name,
        with_heartbeat=with_heartbeat
    )


def _setup_logging(args: argparse.Namespace, config_manager: ConfigManager) -> None:
    setup_logger(
        name=ROOT_LOGGER_NAME,
        console_level_name=args.log_level or config_manager.get('logging.console_level', 'INFO'),
        file_level_name=config_manager.get('logging.file_level', 'DEBUG'),
        log_file_path=args.log_file or config_manager.get('logging.file_path'),
        force=True
    )


def _run_agent_command(args: argparse.Namespace) -> int:
    """Handles the 'run' CLI command."""
    try:
        config_manager = _load_config_manager(args)
        _setup_logging(args, config_manager)
        config = _build_agent_config(args, config_manager)
    except ConfigurationError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    agent = Agent()

    def handle_signal(signum, frame):
        logger.info(f"Signal {signum} received. Stopping agent...")
        agent.stop()

    signal.signal(signal.SIGTERM, handle_signal)

    logger.info(f"{__app_name__} {__version__} starting.")
    agent.start(config)
    try:
        while not agent.wait(timeout=5.0):
            pass
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received (Ctrl+C). Stopping agent...")
        agent.stop()
    return 0


def _run_check_config_command(args: argparse.Namespace) -> int:
    """Handles the 'check-config' CLI command."""
    try:
        config_manager = _load_config_manager(args)
        config = _build_agent_config(args, config_manager)
    except ConfigurationError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    print(json.dumps(config.to_dict(), indent=2))
    return 0


def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--config', help='Path to the agent configuration JSON file.')
    parser.add_argument('--host', help='Collector host (overrides the config file).')
    parser.add_argument('--port', type=int, help='Collector port (overrides the config file).')
    parser.add_argument('--secret', help='Bearer token presented to the collector (overrides the config file).')
    parser.add_argument('--name', help='Agent name; the process id is appended (overrides the config file).')
    parser.add_argument('--heartbeat', action='store_true', help='Send a process stat report on every health check.')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='diag-agent', description=f"{__app_name__} CLI.")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Connect to the collector and serve diagnostic commands.')
    _add_connection_arguments(run_parser)
    run_parser.add_argument('--log-level', help='Console log level (overrides the config file).')
    run_parser.add_argument('--log-file', help='Log file path (overrides the config file).')
    run_parser.set_defaults(func=_run_agent_command)

    check_parser = subparsers.add_parser('check-config', help='Validate the configuration and print the effective settings.')
    _add_connection_arguments(check_parser)
    check_parser.set_defaults(func=_run_check_config_command)

    return parser


def main(argv=None) -> int:
    """
    Main function to parse arguments and dispatch commands.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, 'func'):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
