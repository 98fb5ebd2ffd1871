"""Publisher role: meter bridge TCP stream -> MQTT topic.

Reads the newline-delimited P1 stream from the bridge device, frames it into
telegrams and publishes each one, waiting for the acknowledgment before
reading on. Publishes therefore go out one at a time in framing order.
"""

import logging
import socket
import threading
from collections.abc import Iterable, Iterator
from typing import TextIO

import paho.mqtt.client as mqtt

from src.config import AppConfig
from src.framer import LINE_ENCODING, LINE_ERRORS, frame_telegrams
from src.mqtt_client import BrokerConnectError, create_client, open_connection

logger = logging.getLogger(__name__)


class BridgeConnectError(Exception):
    """Raised when the TCP connection to the meter bridge cannot be opened."""


class BridgeStreamError(Exception):
    """Raised when the meter bridge stream fails or is closed."""


class PublisherBridge:
    def __init__(self, config: AppConfig, client: mqtt.Client | None = None):
        self.config = config
        self.client = client if client is not None else create_client(config.mqtt)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self._connack = threading.Event()
        self._connack_failure: str | None = None
        self._sock: socket.socket | None = None
        self._loop_started = False

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error("MQTT broker connection failed: %s", reason_code)
            self._connack_failure = str(reason_code)
        else:
            logger.info("Connected to MQTT broker at %s", self.config.mqtt.broker)
            self._connack_failure = None
        self._connack.set()

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.warning("Unexpected disconnect from MQTT broker (%s), will reconnect", reason_code)

    def connect(self) -> None:
        """Connect to the meter bridge, then to the broker. Failures are fatal."""
        bridge = self.config.bridge
        try:
            self._sock = socket.create_connection((bridge.host, bridge.port), timeout=bridge.connect_timeout)
        except OSError as e:
            raise BridgeConnectError(f"failed to connect to bridge at {bridge.host}:{bridge.port}: {e}") from e
        # Blocking reads from here on; the stream ends only on EOF or error.
        self._sock.settimeout(None)
        logger.info("Connected to bridge at %s:%d", bridge.host, bridge.port)

        open_connection(self.client, self.config.mqtt)
        self.client.loop_start()
        self._loop_started = True
        if not self._connack.wait(timeout=self.config.mqtt.connect_timeout):
            raise BrokerConnectError(f"no CONNACK from MQTT broker at {self.config.mqtt.broker}")
        if self._connack_failure is not None:
            raise BrokerConnectError(f"MQTT broker at {self.config.mqtt.broker} refused connection: {self._connack_failure}")

    def run(self, connection: TextIO | None = None) -> None:
        """Frame and publish telegrams until the stream fails.

        Never returns normally: EOF and read errors raise ``BridgeStreamError``.
        """
        if connection is None:
            connection = self._sock.makefile("r", encoding=LINE_ENCODING, errors=LINE_ERRORS, newline="\n")
        logger.info("Running as publisher: bridge -> %s", self.config.mqtt.topic)

        max_size = self.config.framer.max_telegram_size
        for telegram in frame_telegrams(_read_lines(connection), max_size=max_size):
            self.publish(telegram)

        raise BridgeStreamError("bridge closed the connection")

    def publish(self, telegram: bytes) -> bool:
        """Publish one telegram and wait for its acknowledgment. Failures are not retried."""
        cfg = self.config.mqtt
        info = self.client.publish(cfg.topic, telegram, qos=cfg.qos, retain=cfg.retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Publish to %s not confirmed: rc=%d, not retrying", cfg.topic, info.rc)
            return False

        try:
            info.wait_for_publish(timeout=cfg.publish_timeout)
        except (RuntimeError, ValueError) as e:
            logger.error("Publish to %s failed: %s", cfg.topic, e)
            return False

        if not info.is_published():
            logger.error("Publish to %s not confirmed within %ss, not retrying", cfg.topic, cfg.publish_timeout)
            return False

        logger.debug("Published telegram (%d bytes) to %s", len(telegram), cfg.topic)
        return True

    def stop(self) -> None:
        if self._loop_started:
            self.client.loop_stop()
            self._loop_started = False
        self.client.disconnect()
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        logger.info("Publisher stopped")


def _read_lines(connection: Iterable[str]) -> Iterator[str]:
    try:
        for line in connection:
            yield line.removesuffix("\n").removesuffix("\r")
    except OSError as e:
        raise BridgeStreamError(f"error reading from bridge: {e}") from e
