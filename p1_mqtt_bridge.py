#!/usr/bin/env python3
"""P1 MQTT Bridge.

Publisher role: reads DSMR telegrams from a smart meter bridge over TCP
and publishes each complete telegram to an MQTT topic.
Subscriber role: subscribes to that topic and appends every telegram
to dated backup files.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

import yaml

from src.backup import BackupWriter
from src.config import PROJECT_ROOT, AppConfig, Role, load_config
from src.mqtt_client import BrokerConnectError, create_client
from src.publisher import BridgeConnectError, BridgeStreamError, PublisherBridge
from src.subscriber import SubscriberBridge
from src.supervisor import ConnectionSupervisor

logger = logging.getLogger("p1_mqtt_bridge")


def setup_logging(level: str, log_file: str | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bridge smart meter P1 telegrams between a TCP bridge and MQTT")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=PROJECT_ROOT / "config.yaml",
        help="Path to configuration file (default: config.yaml in the project root)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def run_publisher(config: AppConfig) -> None:
    bridge = PublisherBridge(config)

    def shutdown(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    try:
        bridge.connect()
        bridge.run()
    except (BridgeConnectError, BrokerConnectError) as e:
        logger.error("Publisher startup failed: %s", e)
        sys.exit(1)
    except BridgeStreamError as e:
        logger.error("Publisher error: %s", e)
        sys.exit(1)
    finally:
        bridge.stop()


def run_subscriber(config: AppConfig) -> None:
    bridge = SubscriberBridge(BackupWriter(config.backup.path))
    supervisor = ConnectionSupervisor(create_client(config.mqtt), config.mqtt, bridge.on_message)

    def shutdown(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        supervisor.stop()
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    try:
        supervisor.start()
    except BrokerConnectError as e:
        logger.error("Subscriber startup failed: %s", e)
        sys.exit(1)
    logger.info("Backing up telegrams to %s", config.backup.path)

    # Block main thread; the MQTT loop runs in a background thread
    while True:
        signal.pause()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        setup_logging("INFO", None)
        logger.error("Failed to load config: %s", e)
        sys.exit(1)

    setup_logging("DEBUG" if args.verbose else config.log_level, config.logging.file)

    if config.role is Role.PUBLISHER:
        run_publisher(config)
    else:
        run_subscriber(config)


if __name__ == "__main__":
    main()
