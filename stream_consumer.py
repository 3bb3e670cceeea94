#!/usr/bin/env python3
"""
Floor Monitor Stream Consumer

Subscribes to the Redis machine events channel and drives the production
accounting loop:
- Parses transport events onto the run state tracker queue
- Ticks live estimates for running machines once per second
- Reconciles local snapshots with the server summary every 30 s
"""

import asyncio
import json
import signal
from datetime import datetime
from typing import Any, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from config import Settings, get_settings
from core.exceptions import ConfigurationMissing
from database import get_db_context, init_database, shutdown_database
from db.production_store import SqlMachineStore
from edge.snapshot_store import SnapshotStore
from logger import configure_logging, get_logger
from schemas.production import MachineEvent, MachineEventType, MachineInfo, MachineStatus, ProductionReading
from services.production_estimator import ProductionEstimator
from services.production_summary_service import MachineSpeeds
from services.reconciliation import HttpSummaryClient, ReconciliationService
from services.run_state_tracker import RunStateTracker
from services.shift_clock import ShiftClock

logger = get_logger(__name__)


def _first(data: dict, body: dict, *keys: str) -> Any:
    for source in (data, body):
        for key in keys:
            if source.get(key):
                return source[key]
    return None


def parse_event(raw: Any) -> Optional[MachineEvent]:
    """Build a MachineEvent from a pub/sub payload. Returns None for foreign messages.

    Accepts ``machineId``/``machine_id`` and ``status`` values in any case.
    Operation-started events carry their instant in ``startTime``.
    """
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else dict(raw)
    event_type = data.get("type") or data.get("event")
    try:
        event_type = MachineEventType(event_type)
    except ValueError:
        return None
    body = data.get("data") or data.get("payload") or {}
    machine_id = data.get("machine_id", data.get("machineId", body.get("machine_id", body.get("machineId"))))
    status = _first(data, body, "status", "newStatus", "new_status")
    timestamp = _first(data, body, "timestamp", "startTime", "start_time") or datetime.now().isoformat()
    try:
        return MachineEvent(
            type=event_type,
            machine_id=int(machine_id),
            timestamp=timestamp,
            status=MachineStatus.parse(status) if status else None,
            payload=body,
        )
    except (TypeError, ValueError, ValidationError) as e:
        logger.warning("Malformed machine event dropped: %s", e, event_type=event_type.value)
        return None


class DatabaseMachineStore:
    """MachineStore that opens a short session per call."""

    async def get_machine(self, machine_id: int) -> Optional[MachineInfo]:
        async with get_db_context() as db:
            return await SqlMachineStore(db).get_machine(machine_id)

    async def status_history(self, machine_id, start, end):
        async with get_db_context() as db:
            return await SqlMachineStore(db).status_history(machine_id, start, end)

    async def record_status(self, machine_id, status, changed_at) -> None:
        async with get_db_context() as db:
            await SqlMachineStore(db).record_status(machine_id, status, changed_at)


class StreamConsumer:
    """Redis pub/sub bridge feeding the tracker's inbound queue."""

    def __init__(self, redis_url: str, channel: str, queue: asyncio.Queue) -> None:
        self._redis_url = redis_url
        self._channel = channel
        self._queue = queue
        self.messages_received = 0
        self.events_queued = 0
        self.logger = logger.bind(service="StreamConsumer")

    async def handle_message(self, data: Any) -> None:
        self.messages_received += 1
        try:
            event = parse_event(data)
        except json.JSONDecodeError as e:
            self.logger.warning("Undecodable message: %s", e)
            return
        if event is None:
            return
        await self._queue.put(event)
        self.events_queued += 1

    async def run(self, stop_event: asyncio.Event) -> None:
        client = aioredis.from_url(self._redis_url, decode_responses=True)
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            self.logger.info("Subscribed to machine events", channel=self._channel)
            while not stop_event.is_set():
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message.get("type") != "message":
                    continue
                await self.handle_message(message["data"])
        except aioredis.ConnectionError as e:
            self.logger.error("Redis connection failed: %s", e)
            raise
        finally:
            await pubsub.aclose()
            await client.aclose()
            self.logger.info("Consumer stopped", messages=self.messages_received, events=self.events_queued)


class ProductionMonitor:
    """Wires tracker, estimator, reconciliation and the event bridge together."""

    def __init__(self, settings: Settings, machines=None, summary_source=None,
                 snapshot_store: Optional[SnapshotStore] = None) -> None:
        prod = settings.production
        self.clock = ShiftClock.from_settings(prod)
        self.store = snapshot_store or SnapshotStore(prod.snapshot_store_path)
        self.estimator = ProductionEstimator(self.store, self.clock, prod.tick_interval_seconds)
        machines = machines or DatabaseMachineStore()
        self.speeds = MachineSpeeds(machines)
        self.reconciler = ReconciliationService(
            self.estimator,
            summary_source or HttpSummaryClient(prod.summary_api_base_url, timeout=prod.reconcile_timeout_seconds),
            timeout_seconds=prod.reconcile_timeout_seconds,
            interval_seconds=prod.reconcile_interval_seconds,
        )
        self.tracker = RunStateTracker(self.estimator, self.speeds, self.reconciler, history=machines)
        self._tick_interval = prod.tick_interval_seconds
        self.logger = logger.bind(service="ProductionMonitor")

    async def reading(self, machine_id: int, now: Optional[datetime] = None) -> ProductionReading:
        now = now or self.clock.now()
        state = self.tracker.current(machine_id)
        try:
            speed = await self.speeds.speed_for(machine_id)
        except ConfigurationMissing:
            speed = None
        return self.estimator.reading(
            machine_id, now, speed,
            is_running=self.tracker.is_running(machine_id),
            running_since=state.status_changed_at if state else None,
        )

    async def tick_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            now = self.clock.now()
            for machine_id in self.tracker.machine_ids():
                try:
                    await self.tracker.refresh(machine_id, now)
                except Exception as e:
                    self.logger.warning("Tick failed: %s", e, machine_id=machine_id)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._tick_interval)
            except asyncio.TimeoutError:
                continue

    def machine_ids(self) -> list[int]:
        return sorted(set(self.tracker.machine_ids()) | set(self.store.machine_ids()))

    async def run(self, consumer: StreamConsumer, stop_event: asyncio.Event) -> None:
        self.reconciler.start(self.machine_ids)
        try:
            await asyncio.gather(
                consumer.run(stop_event),
                self.tracker.run(stop_event),
                self.tick_loop(stop_event),
            )
        finally:
            await self.reconciler.stop()
            self.store.close()


async def main() -> None:
    settings = get_settings()
    configure_logging(environment=settings.environment, log_level=settings.log.level,
                      json_format=settings.log.format == "json")
    await init_database(attempts=5)

    monitor = ProductionMonitor(settings)
    consumer = StreamConsumer(settings.redis.url, settings.redis.events_channel, monitor.tracker.queue)
    logger.info("Floor monitor consumer starting", redis=settings.redis.url_safe)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await monitor.run(consumer, stop_event)
    finally:
        await shutdown_database()


if __name__ == "__main__":
    asyncio.run(main())
