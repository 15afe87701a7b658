"""Headless entry point: run the site simulation for a fixed number of ticks."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional, Sequence

import structlog

from site_fleet.enterprise.config.settings import get_settings
from site_fleet.observability import bind_global_context, configure_logging, configure_tracer
from site_fleet.server.grpc import start_grpc_server
from site_fleet.services import AutoScheduler, HeuristicPlanner, SimulationEngine
from site_fleet.services.commands import RequestAutoScheduleCommand, SetSpeedCommand, StartCommand

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Construction site robot fleet simulation (headless).")
    parser.add_argument("--ticks", type=int, default=600, help="Number of ticks to simulate.")
    parser.add_argument("--speed", type=float, default=None, help="Time multiplier applied before the run.")
    parser.add_argument(
        "--auto-schedule",
        action="store_true",
        help="Let the heuristic planner create and assign tasks.",
    )
    parser.add_argument(
        "--schedule-every",
        type=int,
        default=50,
        help="Ticks between auto-schedule requests when --auto-schedule is set.",
    )
    parser.add_argument("--world", default=None, help="YAML world file replacing the built-in site.")
    parser.add_argument("--grpc-port", type=int, default=None, help="Serve the gRPC API on this port while running.")
    return parser


def prepare_engine(args: argparse.Namespace) -> SimulationEngine:
    settings = get_settings()
    if args.world:
        engine_settings = settings.engine.model_copy(update={"world_file": args.world})
        settings = settings.model_copy(update={"engine": engine_settings})
    configure_logging(settings.logging)
    configure_tracer(otlp_endpoint=settings.telemetry.otlp_endpoint)
    bind_global_context(environment=settings.environment, world=settings.engine.world_file or "default")

    engine = SimulationEngine(settings)
    if args.auto_schedule:
        engine.subscribe(AutoScheduler(engine, HeuristicPlanner(engine.scheduler)))
    engine.submit(StartCommand())
    if args.speed is not None:
        engine.submit(SetSpeedCommand(multiplier=args.speed))
    return engine


def run_ticks(engine: SimulationEngine, ticks: int, auto_schedule: bool, schedule_every: int) -> None:
    for index in range(ticks):
        if auto_schedule and index % max(1, schedule_every) == 0:
            engine.submit(RequestAutoScheduleCommand())
        engine.tick()


async def _run_with_grpc(engine: SimulationEngine, args: argparse.Namespace) -> None:
    server = await start_grpc_server(engine, args.grpc_port)
    logger.info("grpc_server_started", port=args.grpc_port)
    try:
        for index in range(args.ticks):
            if args.auto_schedule and index % max(1, args.schedule_every) == 0:
                engine.submit(RequestAutoScheduleCommand())
            engine.tick()
            await asyncio.sleep(0)
    finally:
        await server.stop(grace=1)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    engine = prepare_engine(args)
    if args.grpc_port:
        asyncio.run(_run_with_grpc(engine, args))
    else:
        run_ticks(engine, args.ticks, args.auto_schedule, args.schedule_every)

    snapshot = engine.snapshot()
    logger.info("simulation_finished", tick=snapshot.tick, sim_time=round(snapshot.sim_time, 2))
    print(json.dumps(snapshot.metrics.model_dump(), indent=2))


if __name__ == "__main__":
    main()
