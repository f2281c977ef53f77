"""An output that publishes message payloads to an MQTT broker."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import paho.mqtt.client as mqtt

from arkflow.core import (
    ConfigError,
    ConnectError,
    MessageBatch,
    Output,
    ProcessError,
    register_output_builder,
)

logger = logging.getLogger(__name__)

_DEFAULT_KEEP_ALIVE = 60


class QoS(enum.IntEnum):
    """MQTT delivery guarantee."""

    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2

    @classmethod
    def from_level(cls, level: Optional[int]) -> QoS:
        """The QoS for a configured level; anything unknown means at least once."""
        try:
            return cls(level)
        except ValueError:
            return cls.AT_LEAST_ONCE


@dataclass
class MqttOutputConfig:
    """Broker, session and publishing settings of an MQTT output."""

    host: str
    port: int
    client_id: str
    topic: str
    username: Optional[str] = None
    password: Optional[str] = None
    qos: Optional[int] = None
    clean_session: Optional[bool] = None
    keep_alive: Optional[int] = None
    retain: Optional[bool] = None


class MqttClient(Protocol):
    """What the output needs from an MQTT client."""

    def start(self) -> None: ...

    def publish(self, topic: str, payload: bytes, qos: QoS, retain: bool) -> None: ...

    def disconnect(self) -> None: ...

    def stop(self) -> None: ...


class _PahoClient:
    """An MQTT client backed by paho, with its network loop on a background thread."""

    def __init__(self, config: MqttOutputConfig) -> None:
        self._config = config
        clean_session = True if config.clean_session is None else config.clean_session
        api_version = getattr(mqtt, "CallbackAPIVersion", None)
        if api_version is not None:
            self._client = mqtt.Client(
                api_version.VERSION2,
                client_id=config.client_id,
                clean_session=clean_session,
            )
        else:
            self._client = mqtt.Client(
                client_id=config.client_id, clean_session=clean_session
            )
        if config.username is not None and config.password is not None:
            self._client.username_pw_set(config.username, config.password)

    def start(self) -> None:
        keep_alive = (
            _DEFAULT_KEEP_ALIVE if self._config.keep_alive is None else self._config.keep_alive
        )
        self._client.connect_async(self._config.host, self._config.port, keep_alive)
        self._client.loop_start()

    def publish(self, topic: str, payload: bytes, qos: QoS, retain: bool) -> None:
        info = self._client.publish(topic, payload, int(qos), retain)
        # A message published before the session is up is queued, not lost.
        if info.rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            raise RuntimeError(mqtt.error_string(info.rc))

    def disconnect(self) -> None:
        self._client.disconnect()

    def stop(self) -> None:
        self._client.loop_stop()


ClientFactory = Callable[[MqttOutputConfig], MqttClient]


class MqttOutput(Output):
    """Publishes every payload of a batch to one topic."""

    def __init__(
        self,
        config: MqttOutputConfig,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.config = config
        self._client_factory: ClientFactory = client_factory or _PahoClient
        self._client: Optional[MqttClient] = None
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        try:
            client = self._client_factory(self.config)
            client.start()
        except Exception as exc:
            raise ConnectError(f"Unable to create an MQTT client: {exc}") from exc
        async with self._lock:
            self._client = client
            self._connected = True

    async def write(self, batch: MessageBatch) -> None:
        if not self._connected:
            raise ConnectError("The output is not connected")
        async with self._lock:
            client = self._client
            if client is None:
                raise ConnectError("The MQTT client is not initialized")
            texts = batch.as_strings()
            qos = QoS.from_level(self.config.qos)
            retain = bool(self.config.retain)
            for text, payload in zip(texts, batch.content):
                logger.info("Send message: %s", text)
                try:
                    client.publish(self.config.topic, payload, qos, retain)
                except Exception as exc:
                    raise ProcessError(f"MQTT publishing failed: {exc}") from exc

    async def close(self) -> None:
        async with self._lock:
            client = self._client
            if client is not None:
                try:
                    client.disconnect()
                except Exception:
                    logger.debug("MQTT disconnect failed", exc_info=True)
                try:
                    client.stop()
                except Exception:
                    logger.debug("Stopping the MQTT loop failed", exc_info=True)
            self._connected = False


def _required_str(config: Mapping[str, Any], key: str) -> str:
    value = config.get(key)
    if not isinstance(value, str):
        raise ConfigError(f"MQTT output configuration needs a string `{key}`")
    return value


def _optional(config: Mapping[str, Any], key: str, kind: type) -> Any:
    value = config.get(key)
    if value is None:
        return None
    if kind is int and isinstance(value, bool):
        raise ConfigError(f"`{key}` must be an integer")
    if not isinstance(value, kind):
        raise ConfigError(f"`{key}` must be of type {kind.__name__}")
    return value


def _int_in_range(value: Optional[int], key: str, upper: Optional[int]) -> None:
    if value is None:
        return
    if value < 0 or (upper is not None and value > upper):
        raise ConfigError(f"`{key}` is out of range")


def _parse_config(config: Optional[Mapping[str, Any]]) -> MqttOutputConfig:
    if config is None:
        raise ConfigError("MQTT output configuration is missing")
    if not isinstance(config, Mapping):
        raise ConfigError("MQTT output configuration must be a mapping")
    port = config.get("port")
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError("MQTT output configuration needs an integer `port`")
    _int_in_range(port, "port", 65535)
    qos = _optional(config, "qos", int)
    _int_in_range(qos, "qos", 255)
    keep_alive = _optional(config, "keep_alive", int)
    _int_in_range(keep_alive, "keep_alive", None)
    return MqttOutputConfig(
        host=_required_str(config, "host"),
        port=port,
        client_id=_required_str(config, "client_id"),
        topic=_required_str(config, "topic"),
        username=_optional(config, "username", str),
        password=_optional(config, "password", str),
        qos=qos,
        clean_session=_optional(config, "clean_session", bool),
        keep_alive=keep_alive,
        retain=_optional(config, "retain", bool),
    )


def build_mqtt_output(config: Optional[Mapping[str, Any]]) -> MqttOutput:
    """Create an MQTT output from its configuration mapping."""
    return MqttOutput(_parse_config(config))


def init() -> None:
    """Register the MQTT output under the name ``mqtt``."""
    register_output_builder("mqtt", build_mqtt_output)