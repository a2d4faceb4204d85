"""Live event subscriptions feeding a ``TransactionLedger``.

One polling task per event category. A failing category is logged, reported
through ``on_error``, marked degraded and retried from the same block; the
other categories keep running. Any other exception ends that category:
it is logged with its traceback, reported and marked degraded, and
``stop()`` re-raises it. All tasks belong to the ``EventLedger`` and are
cancelled when it stops.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import aiohttp

from ..analytics.fixed_point import NOT_AVAILABLE, format_token_amount
from ..assets import AssetRegistry
from ..chains.evm import RpcError
from ..config import LedgerConfig
from ..interfaces.chain import ChainClient
from ..models import TransactionRecord, record_id
from ..protocol.events import EventCategory, ProtocolEvent, decode_log
from .history import TransactionLedger

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

RecordCallback = Callable[[TransactionRecord], None]
ErrorCallback = Callable[[EventCategory, Exception], None]

_SUBSCRIPTION_ERRORS = (RpcError, ValueError, aiohttp.ClientError, asyncio.TimeoutError)


def format_timestamp(timestamp: int) -> str:
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(DATE_FORMAT)
    except (OverflowError, ValueError, OSError):
        return NOT_AVAILABLE


class EventLedger:
    """History of one user's deposits, withdrawals, borrows and repayments.

    Use as an async context manager::

        async with EventLedger(client, pool, registry, user, config) as ledger:
            ...
            print(ledger.records)
    """

    def __init__(
        self,
        client: ChainClient,
        pool_address: str,
        registry: AssetRegistry,
        user: str,
        config: LedgerConfig = LedgerConfig(),
        on_record: Optional[RecordCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        if not user:
            raise ValueError("EventLedger requires a user address")
        self._client = client
        self._pool = pool_address
        self._registry = registry
        self.user = user
        self._config = config
        self._on_record = on_record
        self._on_error = on_error
        self.ledger = TransactionLedger(config.capacity)
        self._tasks: dict[EventCategory, asyncio.Task] = {}
        self._degraded: set[EventCategory] = set()
        self._stopped = False

    async def __aenter__(self) -> "EventLedger":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    @property
    def degraded(self) -> frozenset[EventCategory]:
        return frozenset(self._degraded)

    @property
    def records(self) -> tuple[TransactionRecord, ...]:
        return self.ledger.records

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("EventLedger cannot be restarted after stop()")
        if self._tasks:
            return
        for category in EventCategory:
            task = asyncio.create_task(
                self._subscribe(category), name=f"ledger-{category.event_name}"
            )
            task.add_done_callback(functools.partial(self._on_task_done, category))
            self._tasks[category] = task
        logger.info("Watching %d event types for %s", len(self._tasks), self.user)

    async def stop(self) -> None:
        """Cancel every subscription.

        A subscription that died on an unexpected error re-raises it here,
        after all the others have been cancelled.
        """
        self._stopped = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.debug("Event subscriptions for %s stopped", self.user)

        errors = [
            r for r in results
            if isinstance(r, BaseException) and not isinstance(r, asyncio.CancelledError)
        ]
        if errors:
            raise errors[0]

    def _on_task_done(self, category: EventCategory, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        error = task.exception()
        logger.error(
            "%s subscription stopped on unexpected error", category.event_name, exc_info=error
        )
        self._degraded.add(category)
        if self._on_error is not None:
            self._on_error(category, error)

    # ------------------------------------------------------------------
    # Subscription loop
    # ------------------------------------------------------------------

    async def _start_block(self) -> int:
        latest = await self._client.block_number()
        return max(0, latest + 1 - self._config.lookback_blocks)

    async def _subscribe(self, category: EventCategory) -> None:
        topics = category.topic_filter(self.user)
        from_block: Optional[int] = None

        while True:
            try:
                if from_block is None:
                    from_block = await self._start_block()
                to_block = await self._client.block_number()
                if to_block >= from_block:
                    logs = await self._client.get_logs(self._pool, topics, from_block, to_block)
                    self._process_logs(category, logs)
                    from_block = to_block + 1
                if category in self._degraded:
                    self._degraded.discard(category)
                    logger.info("%s subscription recovered", category.event_name)
            except _SUBSCRIPTION_ERRORS as e:
                self._report_failure(category, e)
                await asyncio.sleep(self._config.retry_delay_seconds)
                continue

            await asyncio.sleep(self._config.poll_interval_seconds)

    def _report_failure(self, category: EventCategory, error: Exception) -> None:
        logger.warning("Error watching %s events: %s", category.event_name, error)
        self._degraded.add(category)
        if self._on_error is not None:
            self._on_error(category, error)

    def _process_logs(self, category: EventCategory, logs: list[dict]) -> None:
        for log in logs:
            try:
                event = decode_log(category, log)
            except ValueError as e:
                logger.warning("Skipping malformed %s log: %s", category.event_name, e)
                continue
            if event is None:
                logger.debug("Skipping removed %s log", category.event_name)
                continue
            if not event.involves(self.user):
                continue
            self._accept(event)

    def _accept(self, event: ProtocolEvent) -> None:
        if self._stopped:
            return
        record = self.to_record(event)
        if self.ledger.insert(record) and self._on_record is not None:
            self._on_record(record)

    def to_record(self, event: ProtocolEvent) -> TransactionRecord:
        decimals = self._registry.decimals_for(event.asset)
        return TransactionRecord(
            id=record_id(event.tx_hash, event.log_index),
            event_type=event.category.transaction_type,
            asset_symbol=self._registry.symbol_for(event.asset),
            asset_address=event.asset,
            amount=event.amount,
            amount_formatted=format_token_amount(event.amount, decimals),
            timestamp=event.timestamp,
            date_formatted=format_timestamp(event.timestamp),
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            user=event.user,
            repayer=event.repayer,
        )
