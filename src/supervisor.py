"""Broker connection lifecycle for the subscriber role.

States::

    DISCONNECTED --start()/reconnect attempt--> CONNECTING
    CONNECTING   --CONNACK accepted-----------> CONNECTED   (subscribe issued)
    CONNECTING   --CONNACK refused/failed-----> DISCONNECTED
    CONNECTED    --connection lost------------> DISCONNECTED

Reconnect attempts are made by the paho network loop with exponential
backoff and no retry limit; the supervisor only reacts to its callbacks.
"""

import logging
import threading
from collections.abc import Callable
from enum import Enum

import paho.mqtt.client as mqtt

from src.config import MqttConfig
from src.mqtt_client import BrokerConnectError, open_connection

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    def __init__(
        self,
        client: mqtt.Client,
        config: MqttConfig,
        on_message: Callable[[bytes], object],
        connect_timeout: float | None = None,
    ):
        self.client = client
        self.config = config
        self.handler = on_message
        self.connect_timeout = config.connect_timeout if connect_timeout is None else connect_timeout
        self.subscribed = False
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.Lock()
        self._connack = threading.Event()
        self._subscribe_mid: int | None = None

        client.on_pre_connect = self._on_pre_connect
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _transition(self, new_state: ConnectionState) -> None:
        with self._lock:
            old_state, self._state = self._state, new_state
            if new_state is not ConnectionState.CONNECTED:
                self.subscribed = False
        if old_state is not new_state:
            logger.debug("Broker connection %s -> %s", old_state.value, new_state.value)

    def _on_pre_connect(self, client: mqtt.Client, userdata) -> None:
        self._transition(ConnectionState.CONNECTING)

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error("MQTT broker connection failed: %s", reason_code)
            self._transition(ConnectionState.DISCONNECTED)
            self._connack.set()
            return
        logger.info("Connected to MQTT broker at %s", self.config.broker)
        self._transition(ConnectionState.CONNECTED)
        self._connack.set()
        self._subscribe(client)

    def _subscribe(self, client: mqtt.Client) -> None:
        topic, qos = self.config.topic, self.config.qos
        result, mid = client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Error subscribing to %s: rc=%d", topic, result)
            return
        self._subscribe_mid = mid

    def _on_subscribe(self, client: mqtt.Client, userdata, mid, reason_code_list, properties) -> None:
        if mid != self._subscribe_mid:
            return
        failures = [rc for rc in reason_code_list if rc.is_failure]
        if failures:
            logger.error("Subscription to %s rejected: %s", self.config.topic, failures[0])
            return
        self.subscribed = True
        logger.info("Subscribed to %s (qos=%d)", self.config.topic, self.config.qos)

    def _on_connect_fail(self, client: mqtt.Client, userdata) -> None:
        logger.warning("Reconnect to MQTT broker at %s failed, retrying", self.config.broker)
        self._transition(ConnectionState.DISCONNECTED)

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._transition(ConnectionState.DISCONNECTED)
        if reason_code.is_failure:
            logger.warning("Connection lost: %s (will auto-reconnect)", reason_code)

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage) -> None:
        self.handler(msg.payload)

    def start(self) -> None:
        """Connect and wait for the first CONNACK. Raises ``BrokerConnectError`` on failure."""
        self._transition(ConnectionState.CONNECTING)
        try:
            open_connection(self.client, self.config)
        except BrokerConnectError:
            self._transition(ConnectionState.DISCONNECTED)
            raise
        self.client.loop_start()

        if not self._connack.wait(timeout=self.connect_timeout):
            self.client.loop_stop()
            self._transition(ConnectionState.DISCONNECTED)
            raise BrokerConnectError(f"no CONNACK from MQTT broker at {self.config.broker}")
        if self._state is not ConnectionState.CONNECTED:
            self.client.loop_stop()
            raise BrokerConnectError(f"MQTT broker at {self.config.broker} refused connection")
        logger.info("Running as subscriber: %s -> file backup", self.config.topic)

    def stop(self) -> None:
        self.client.loop_stop()
        self.client.disconnect()
        self._transition(ConnectionState.DISCONNECTED)
        logger.info("Subscriber stopped")
