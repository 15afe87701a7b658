"""Messaging abstraction supporting MQTT and AMQP backends."""

from __future__ import annotations

import asyncio
import json
import ssl
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, Set

import aio_pika
import paho.mqtt.client as mqtt
import structlog
from aio_pika.abc import AbstractIncomingMessage

from site_fleet.enterprise.config.settings import MQTTSettings
from site_fleet.enterprise.core import EngineEvent, WorldSnapshot
from site_fleet.services.broadcast import SnapshotSubscriber
from site_fleet.services.commands import AdmissionError, CommandReceipt

if TYPE_CHECKING:
	from site_fleet.services.simulation import SimulationEngine

logger = structlog.get_logger(__name__)

MessageHandler = Callable[[dict], Awaitable[None] | None]

EXCHANGE_NAME = "site_fleet"


@dataclass
class MessageEnvelope:
	"""Represents a structured message transported over the bus."""

	topic: str
	payload: dict
	qos: int = 0


class MessageBus:
	"""Abstract messaging bus interface."""

	async def connect(self) -> None:  # pragma: no cover - interface
		raise NotImplementedError

	async def publish(self, envelope: MessageEnvelope) -> None:  # pragma: no cover - interface
		raise NotImplementedError

	async def subscribe(self, topic: str, handler: MessageHandler) -> None:  # pragma: no cover - interface
		raise NotImplementedError

	async def close(self) -> None:  # pragma: no cover - interface
		raise NotImplementedError


class MQTTMessageBus(MessageBus):
	"""Async wrapper around :mod:`paho.mqtt` with TLS support."""

	def __init__(self, client_id: str, settings: MQTTSettings) -> None:
		self.settings = settings
		self.client = mqtt.Client(client_id=client_id, callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
		self.loop: Optional[asyncio.AbstractEventLoop] = None
		self._subscriptions: Dict[str, MessageHandler] = {}
		self.client.on_message = self._handle_message
		self.client.on_connect = self._on_connect

		if settings.username:
			self.client.username_pw_set(settings.username, settings.password)

		if settings.use_tls:
			context = ssl.create_default_context()
			if settings.ca_path:
				context.load_verify_locations(settings.ca_path)
			if settings.client_cert_path and settings.client_key_path:
				context.load_cert_chain(settings.client_cert_path, settings.client_key_path)
			self.client.tls_set_context(context)

	def _running_loop(self) -> asyncio.AbstractEventLoop:
		if self.loop is None:
			self.loop = asyncio.get_running_loop()
		return self.loop

	async def connect(self) -> None:
		loop = self._running_loop()
		await loop.run_in_executor(
			None,
			lambda: self.client.connect(self.settings.broker_host, self.settings.port, keepalive=60),
		)
		self.client.loop_start()
		logger.info("mqtt_connected", host=self.settings.broker_host, port=self.settings.port)

	def _on_connect(self, client: mqtt.Client, _userdata, _flags, rc, _properties=None) -> None:
		if rc != 0:
			logger.error("mqtt_connect_failed", code=str(rc))
			return
		for topic in self._subscriptions:
			client.subscribe(topic)

	def _handle_message(
		self,
		_client: mqtt.Client,
		_userdata,
		msg: mqtt.MQTTMessage,
	) -> None:
		handler = self._subscriptions.get(msg.topic)
		if not handler or self.loop is None:
			return
		try:
			payload = json.loads(msg.payload.decode())
		except (UnicodeDecodeError, json.JSONDecodeError):
			logger.warning("mqtt_payload_invalid", topic=msg.topic)
			return

		async def invoke() -> None:
			result = handler(payload)
			if asyncio.iscoroutine(result):
				await result

		asyncio.run_coroutine_threadsafe(invoke(), self.loop)

	async def publish(self, envelope: MessageEnvelope) -> None:
		data = json.dumps(envelope.payload)
		await self._running_loop().run_in_executor(
			None,
			lambda: self.client.publish(envelope.topic, data, qos=envelope.qos),
		)

	async def subscribe(self, topic: str, handler: MessageHandler) -> None:
		self._subscriptions[topic] = handler
		await self._running_loop().run_in_executor(None, lambda: self.client.subscribe(topic))

	async def close(self) -> None:
		loop = self._running_loop()
		await loop.run_in_executor(None, self.client.loop_stop)
		await loop.run_in_executor(None, self.client.disconnect)


class AMQPMessageBus(MessageBus):
	"""AMQP implementation backed by :mod:`aio_pika`."""

	def __init__(self, url: str) -> None:
		self.url = url
		self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
		self._channel: Optional[aio_pika.abc.AbstractChannel] = None
		self._exchange: Optional[aio_pika.abc.AbstractExchange] = None
		self._queues: Dict[str, aio_pika.abc.AbstractQueue] = {}

	async def connect(self) -> None:
		self._connection = await aio_pika.connect_robust(self.url)
		self._channel = await self._connection.channel()
		self._exchange = await self._channel.declare_exchange(EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC)

	async def publish(self, envelope: MessageEnvelope) -> None:
		if not self._exchange:
			raise RuntimeError("AMQP channel not initialised")
		await self._exchange.publish(
			aio_pika.Message(body=json.dumps(envelope.payload).encode()),
			routing_key=envelope.topic,
		)

	async def subscribe(self, topic: str, handler: MessageHandler) -> None:
		if not self._channel or not self._exchange:
			raise RuntimeError("AMQP channel not initialised")
		queue = await self._channel.declare_queue(topic, durable=False, auto_delete=True)
		await queue.bind(self._exchange, routing_key=topic)

		async def _wrapped(message: AbstractIncomingMessage) -> None:
			async with message.process():
				payload = json.loads(message.body.decode())
				result = handler(payload)
				if asyncio.iscoroutine(result):
					await result

		await queue.consume(_wrapped)
		self._queues[topic] = queue

	async def close(self) -> None:
		if self._channel:
			await self._channel.close()
		if self._connection:
			await self._connection.close()


def build_message_bus(settings: MQTTSettings, client_id: str = "site-fleet") -> MessageBus:
	"""AMQP when ``amqp_url`` is configured, MQTT otherwise."""

	if settings.amqp_url:
		return AMQPMessageBus(settings.amqp_url)
	return MQTTMessageBus(client_id, settings)


class BusPublisher(SnapshotSubscriber):
	"""Forwards engine events, and every Nth snapshot, onto the bus.

	Publishing is scheduled as a task on the running loop so the tick never
	waits on network I/O.
	"""

	def __init__(self, bus: MessageBus, settings: MQTTSettings) -> None:
		self.bus = bus
		self.settings = settings
		self._snapshots_seen = 0
		self._pending: Set[asyncio.Task] = set()

	def _schedule(self, envelope: MessageEnvelope) -> None:
		task = asyncio.get_running_loop().create_task(self.bus.publish(envelope))
		self._pending.add(task)
		task.add_done_callback(self._finished)

	def _finished(self, task: asyncio.Task) -> None:
		self._pending.discard(task)
		if not task.cancelled() and task.exception() is not None:
			logger.warning("bus_publish_failed", error=str(task.exception()))

	def on_event(self, event: EngineEvent) -> None:
		self._schedule(MessageEnvelope(topic=self.settings.topic_events, payload=event.model_dump(mode="json")))

	def on_snapshot(self, snapshot: WorldSnapshot) -> None:
		self._snapshots_seen += 1
		if self._snapshots_seen % self.settings.snapshot_every_n_ticks:
			return
		self._schedule(
			MessageEnvelope(topic=self.settings.topic_snapshots, payload=snapshot.model_dump(mode="json"))
		)

	async def flush(self) -> None:
		if self._pending:
			await asyncio.gather(*list(self._pending), return_exceptions=True)


class CommandListener:
	"""Submits JSON commands received on the command topic to the engine."""

	def __init__(self, engine: "SimulationEngine", bus: MessageBus, topic: str) -> None:
		self.engine = engine
		self.bus = bus
		self.topic = topic

	async def start(self) -> None:
		await self.bus.subscribe(self.topic, self.handle)

	def handle(self, payload: dict) -> Optional[CommandReceipt]:
		try:
			receipt = self.engine.submit(payload)
		except AdmissionError as exc:
			logger.info("bus_command_rejected", code=exc.code, reason=exc.message)
			return None
		logger.debug("bus_command_accepted", command_id=receipt.command_id, type=receipt.type)
		return receipt


class MessagingBridge:
	"""Connects the engine to a message bus for the lifetime of the app."""

	def __init__(self, engine: "SimulationEngine", bus: MessageBus, settings: MQTTSettings) -> None:
		self.engine = engine
		self.bus = bus
		self.publisher = BusPublisher(bus, settings)
		self.listener = CommandListener(engine, bus, settings.topic_commands)

	async def start(self) -> None:
		await self.bus.connect()
		await self.listener.start()
		self.engine.subscribe(self.publisher)

	async def stop(self) -> None:
		self.engine.unsubscribe(self.publisher)
		await self.publisher.flush()
		await self.bus.close()
