#!/usr/bin/env python3
"""
Main entry point for the PSK VPN system.
Provides command-line interfaces for the server and the client.
"""
import sys
import signal
import logging
import argparse
import threading
from typing import Any, Callable, List, Optional

from common.errors import ConfigError, ConnectionCancelled, SetupError
from common.utils.config import ConfigManager, TunnelSettings
from common.utils.logging_setup import setup_logging

logger = logging.getLogger("pskvpn.main")

POLL_INTERVAL = 1.0  # seconds between checks of the stop event


def parse_args(argv: Optional[List[str]] = None, mode: Optional[str] = None) -> argparse.Namespace:
    """
    Parse command line arguments

    Args:
        argv: Arguments (None for sys.argv)
        mode: Fixed mode; hides the --mode option when given

    Returns:
        Parsed arguments
    """
    prog = f"pskvpn-{mode}" if mode else "pskvpn"
    parser = argparse.ArgumentParser(prog=prog, description="Pre-shared key VPN tunnel")
    parser.add_argument("config", nargs="?", default=ConfigManager.DEFAULT_CONFIG_PATH,
                        help="Path to configuration file (default: %(default)s)")
    if mode is None:
        parser.add_argument("--mode", choices=["client", "server"],
                            help="Override the mode from the configuration file")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Override the configured log level")

    args = parser.parse_args(argv)
    if mode is not None:
        args.mode = mode
    return args


def create_service(settings: TunnelSettings,
                   interface_factory: Optional[Callable[..., Any]] = None,
                   transport_factory: Optional[Callable[..., Any]] = None):
    """
    Build the client or server for the configured mode

    Args:
        settings: Validated tunnel settings
        interface_factory: Optional PacketInterface factory
        transport_factory: Optional transport factory

    Returns:
        VPNClient or VPNServer (not started)
    """
    if settings.mode == "server":
        from server.server import VPNServer
        return VPNServer(settings, interface_factory, transport_factory)

    from client.client import VPNClient
    return VPNClient(settings, interface_factory, transport_factory)


def _install_signal_handlers(service) -> dict:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def signal_handler(signum, frame):
        """Handle termination signals"""
        logger.info(f"Received signal {signum}, shutting down")
        service.request_stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, signal_handler)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def run(config_path: Optional[str] = None, mode: Optional[str] = None,
        log_level: Optional[str] = None,
        interface_factory: Optional[Callable[..., Any]] = None,
        transport_factory: Optional[Callable[..., Any]] = None) -> int:
    """
    Load configuration, run the service until it is told to stop

    Args:
        config_path: Path to the configuration file
        mode: "client" or "server" (None for the configured mode)
        log_level: Override for the configured log level
        interface_factory: Optional PacketInterface factory
        transport_factory: Optional transport factory

    Returns:
        Exit code: 0 after a clean shutdown, 1 on any setup or fatal error
    """
    setup_logging("pskvpn", log_level=log_level or "INFO")

    try:
        config_manager = ConfigManager(config_path)
        if config_manager.created:
            logger.warning(f"Wrote default configuration to {config_manager.config_path}, "
                           f"set security.psk before starting")
        settings = TunnelSettings.from_config(config_manager, mode)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    setup_logging(
        "pskvpn",
        log_level=log_level or config_manager.get("logging.level", "INFO"),
        log_file=config_manager.get("logging.file"),
        log_to_console=config_manager.get("logging.console", True),
        secrets=[settings.psk]
    )

    service = create_service(settings, interface_factory, transport_factory)
    previous_handlers = _install_signal_handlers(service)
    status_server = None

    try:
        try:
            service.start()
        except ConnectionCancelled as e:
            logger.info(f"Startup cancelled: {e}")
            return 0
        except SetupError as e:
            logger.error(f"Failed to start VPN {settings.mode}: {e}")
            return 1

        if config_manager.get("status.enabled"):
            from server.web.app import StatusServer
            status_server = StatusServer(
                service,
                host=config_manager.get("status.host", "127.0.0.1"),
                port=config_manager.get("status.port", 8080)
            )
            try:
                status_server.start()
            except OSError as e:
                logger.error(f"Failed to start status API: {e}")
                status_server = None
                return 1

        logger.info(f"VPN {settings.mode} running, press Ctrl+C to stop")
        while not service.wait(POLL_INTERVAL):
            pass

    finally:
        if status_server is not None:
            status_server.stop()
        service.stop()
        _restore_signal_handlers(previous_handlers)

    if service.fatal_error is not None:
        logger.error(f"VPN {settings.mode} stopped after fatal error: {service.fatal_error}")
        return 1

    logger.info(f"VPN {settings.mode} shut down cleanly")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    return run(args.config, args.mode, args.log_level)


def server_main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv, mode="server")
    return run(args.config, args.mode, args.log_level)


def client_main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv, mode="client")
    return run(args.config, args.mode, args.log_level)


if __name__ == "__main__":
    sys.exit(main())
