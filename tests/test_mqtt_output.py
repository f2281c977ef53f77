import pytest

from arkflow.core import (
    ConfigError,
    ConnectError,
    Field,
    MessageBatch,
    ProcessError,
    Table,
    build_output,
)
from arkflow.mqtt_output import (
    MqttOutput,
    MqttOutputConfig,
    QoS,
    build_mqtt_output,
    init,
)


class FakeClient:
    def __init__(self, config, fail_publish=False, fail_disconnect=False):
        self.config = config
        self.started = False
        self.stopped = False
        self.connected = True
        self.published = []
        self.fail_publish = fail_publish
        self.fail_disconnect = fail_disconnect

    def start(self):
        self.started = True

    def publish(self, topic, payload, qos, retain):
        if self.fail_publish:
            raise RuntimeError("queue full")
        self.published.append((topic, payload, qos, retain))

    def disconnect(self):
        if self.fail_disconnect:
            raise RuntimeError("broken pipe")
        self.connected = False

    def stop(self):
        self.stopped = True


class Factory:
    def __init__(self, **options):
        self.options = options
        self.clients = []

    def __call__(self, config):
        client = FakeClient(config, **self.options)
        self.clients.append(client)
        return client


def make_config(**overrides):
    values = dict(host="localhost", port=1883, client_id="test_client", topic="test/topic")
    values.update(overrides)
    return MqttOutputConfig(**values)


def test_build_output_from_full_config():
    password = "password"
    output = build_mqtt_output(
        {
            "host": "localhost",
            "port": 1883,
            "client_id": "test_client",
            "username": "user",
            "password": password,
            "topic": "test/topic",
            "qos": 1,
            "clean_session": True,
            "keep_alive": 60,
            "retain": False,
        }
    )
    assert isinstance(output, MqttOutput)
    assert output.config.username == "user"
    assert output.config.password == "password"
    assert output.config.keep_alive == 60
    assert output.connected is False


@pytest.mark.asyncio
async def test_connect_starts_client():
    factory = Factory()
    output = MqttOutput(make_config(), client_factory=factory)
    await output.connect()
    assert output.connected is True
    assert len(factory.clients) == 1
    assert factory.clients[0].started is True
    assert factory.clients[0].config.host == "localhost"


@pytest.mark.asyncio
async def test_write_publishes_message():
    factory = Factory()
    output = MqttOutput(make_config(), client_factory=factory)
    await output.connect()
    await output.write(MessageBatch.from_string("test message"))
    messages = factory.clients[0].published
    assert len(messages) == 1
    assert messages[0][0] == "test/topic"
    assert messages[0][1] == b"test message"
    assert messages[0][2] is QoS.AT_LEAST_ONCE
    assert messages[0][3] is False


@pytest.mark.asyncio
async def test_write_uses_configured_qos_and_retain():
    factory = Factory()
    output = MqttOutput(make_config(qos=2, retain=True), client_factory=factory)
    await output.connect()
    await output.write(MessageBatch.new_binary([b"a", b"b"]))
    assert factory.clients[0].published == [
        ("test/topic", b"a", QoS.EXACTLY_ONCE, True),
        ("test/topic", b"b", QoS.EXACTLY_ONCE, True),
    ]


@pytest.mark.parametrize(
    "level, expected",
    [(0, QoS.AT_MOST_ONCE), (1, QoS.AT_LEAST_ONCE), (2, QoS.EXACTLY_ONCE), (None, QoS.AT_LEAST_ONCE), (7, QoS.AT_LEAST_ONCE)],
)
def test_qos_from_level(level, expected):
    assert QoS.from_level(level) is expected


@pytest.mark.asyncio
async def test_close_disconnects_client():
    factory = Factory()
    output = MqttOutput(make_config(), client_factory=factory)
    await output.connect()
    await output.close()
    client = factory.clients[0]
    assert client.connected is False
    assert client.stopped is True
    assert output.connected is False


@pytest.mark.asyncio
async def test_write_after_close_fails():
    output = MqttOutput(make_config(), client_factory=Factory())
    await output.connect()
    await output.close()
    with pytest.raises(ConnectError):
        await output.write(MessageBatch.from_string("test message"))


@pytest.mark.asyncio
async def test_write_without_connect_fails():
    output = MqttOutput(make_config(), client_factory=Factory())
    with pytest.raises(ConnectError):
        await output.write(MessageBatch.from_string("test message"))


@pytest.mark.asyncio
async def test_publish_failure_is_process_error():
    output = MqttOutput(make_config(), client_factory=Factory(fail_publish=True))
    await output.connect()
    with pytest.raises(ProcessError, match="MQTT publishing failed"):
        await output.write(MessageBatch.from_string("test message"))


@pytest.mark.asyncio
async def test_close_ignores_disconnect_failure():
    factory = Factory(fail_disconnect=True)
    output = MqttOutput(make_config(), client_factory=factory)
    await output.connect()
    await output.close()
    assert output.connected is False
    assert factory.clients[0].stopped is True


@pytest.mark.asyncio
async def test_table_batch_is_rejected():
    factory = Factory()
    output = MqttOutput(make_config(), client_factory=factory)
    await output.connect()
    table = Table((Field("id", "Int32"),), ((1,),))
    with pytest.raises(ProcessError):
        await output.write(MessageBatch.new_arrow(table))
    assert factory.clients[0].published == []


@pytest.mark.asyncio
async def test_factory_failure_is_connect_error():
    def broken(config):
        raise OSError("no route")

    output = MqttOutput(make_config(), client_factory=broken)
    with pytest.raises(ConnectError):
        await output.connect()
    assert output.connected is False


def test_missing_config_raises():
    with pytest.raises(ConfigError):
        build_mqtt_output(None)


@pytest.mark.parametrize(
    "config",
    [
        {"host": "localhost", "client_id": "c", "topic": "t"},
        {"host": "localhost", "port": 70000, "client_id": "c", "topic": "t"},
        {"host": "localhost", "port": 1883, "topic": "t"},
        {"host": "localhost", "port": 1883, "client_id": "c", "topic": "t", "qos": "1"},
        {"host": "localhost", "port": 1883, "client_id": "c", "topic": "t", "retain": 1},
    ],
)
def test_invalid_config_raises(config):
    with pytest.raises(ConfigError):
        build_mqtt_output(config)


def test_init_registers_builder():
    init()
    output = build_output(
        "mqtt", {"host": "localhost", "port": 1883, "client_id": "c", "topic": "t"}
    )
    assert isinstance(output, MqttOutput)
    assert output.config.topic == "t"