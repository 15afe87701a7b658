"""Service layer exports for the site fleet simulator."""

from .broadcast import EventLog, QueueSubscriber, SnapshotBroadcaster, SnapshotSubscriber, StreamMessage
from .commands import AdmissionError, Command, CommandReceipt, parse_command
from .health import RobotHealthMonitor, RobotHealthStatus
from .messaging import (
	AMQPMessageBus,
	BusPublisher,
	CommandListener,
	MessageBus,
	MessageEnvelope,
	MessagingBridge,
	MQTTMessageBus,
	build_message_bus,
)
from .planner import AutoScheduler, HeuristicPlanner
from .reservations import ReservationManager
from .scheduler import TaskScheduler
from .simulation import SimulationEngine, load_world_config
from .task_pipeline import TaskPipeline, build_steps

__all__ = [
	"AdmissionError",
	"AutoScheduler",
	"BusPublisher",
	"Command",
	"CommandListener",
	"CommandReceipt",
	"EventLog",
	"HeuristicPlanner",
	"MessageBus",
	"MessageEnvelope",
	"MessagingBridge",
	"MQTTMessageBus",
	"AMQPMessageBus",
	"QueueSubscriber",
	"ReservationManager",
	"RobotHealthMonitor",
	"RobotHealthStatus",
	"SimulationEngine",
	"SnapshotBroadcaster",
	"SnapshotSubscriber",
	"StreamMessage",
	"TaskPipeline",
	"TaskScheduler",
	"build_message_bus",
	"build_steps",
	"load_world_config",
	"parse_command",
]
