"""paho-mqtt client construction shared by both roles."""

import logging

import paho.mqtt.client as mqtt

from src.config import MqttConfig

logger = logging.getLogger(__name__)

BACKOFF_BASE = 1
BACKOFF_MAX = 60


class BrokerConnectError(Exception):
    """Raised when the initial connection to the MQTT broker cannot be established."""


def create_client(config: MqttConfig) -> mqtt.Client:
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=config.client_id,
        protocol=mqtt.MQTTv311,
    )
    if config.username:
        client.username_pw_set(config.username, config.password)
    if config.address.tls:
        client.tls_set()
    # The network loop retries forever with this backoff after a lost connection.
    client.reconnect_delay_set(min_delay=BACKOFF_BASE, max_delay=BACKOFF_MAX)
    return client


def open_connection(client: mqtt.Client, config: MqttConfig) -> None:
    """Send CONNECT to the configured broker. The CONNACK arrives on the network loop."""
    host, port, _ = config.address
    try:
        client.connect(host, port, keepalive=config.keepalive)
    except OSError as e:
        raise BrokerConnectError(f"failed to connect to MQTT broker at {config.broker}: {e}") from e
