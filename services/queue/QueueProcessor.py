"""Work-queue processor.

Polls the input directory and handles the queued items one at a time:
idempotence check, validation, whitelist, pipeline under a hard timeout,
reply, ledger, delete. Cycles never overlap; an overlapping tick is skipped.
"""

import asyncio
import json
from datetime import timedelta
from enum import Enum
from pathlib import Path

from pydantic import ValidationError

from shared.clients.mail.MailClientInterface import MailClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperFile import HelperFile
from shared.models.config import WhitelistConfig
from shared.models.pipeline import FailureKind
from shared.models.work_item import WorkItem
from shared.persistence.ConfigStore import ConfigStore, WhitelistError
from shared.persistence.ProcessedLedger import ProcessedLedger
from shared.persistence.WorkQueue import WorkQueue
from services.routing.RequestService import RequestService

POLL_INTERVAL_SECONDS = 5
PIPELINE_TIMEOUT_SECONDS = 120
MAX_RETRIES = 3
RETRY_DELAYS_SECONDS = (30, 60, 120)
SKIP_WARNING_EVERY = 5
SHUTDOWN_MAX_WAIT_SECONDS = 30


class ProcessorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ItemStatus(str, Enum):
    """Where an item ended up after one processing attempt."""

    DONE = "done"
    ALREADY_PROCESSED = "already_processed"
    DEFERRED = "deferred"
    RETRY_PENDING = "retry_pending"
    QUARANTINED = "quarantined"
    KEPT = "kept"


class QueueProcessor:
    def __init__(
        self,
        helper_config: HelperConfig,
        work_queue: WorkQueue,
        ledger: ProcessedLedger,
        config_store: ConfigStore,
        request_service: RequestService,
        mail_client: MailClientInterface,
        poll_interval: float | None = None,
        pipeline_timeout: float | None = None,
        max_retries: int | None = None,
        retry_delays: tuple[float, ...] = RETRY_DELAYS_SECONDS,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._work_queue = work_queue
        self._ledger = ledger
        self._config_store = config_store
        self._request_service = request_service
        self._mail_client = mail_client

        self.poll_interval = poll_interval if poll_interval is not None else helper_config.get_number_val("QUEUE_POLL_INTERVAL_SECONDS", default=POLL_INTERVAL_SECONDS)
        self.pipeline_timeout = pipeline_timeout if pipeline_timeout is not None else helper_config.get_number_val("PIPELINE_TIMEOUT_SECONDS", default=PIPELINE_TIMEOUT_SECONDS)
        self.max_retries = int(max_retries if max_retries is not None else helper_config.get_number_val("QUEUE_MAX_RETRIES", default=MAX_RETRIES))
        self.retry_delays = retry_delays

        self.state = ProcessorState.IDLE
        self.cycle_in_flight = False
        self.skipped_cycles = 0
        self._stop_event = asyncio.Event()
        self._cycle_tasks: set[asyncio.Task] = set()

    ##########################################
    ################# CYCLE ##################
    ##########################################

    async def process_cycle(self) -> bool:
        """Run one poll cycle over every queued item, sequentially.

        Returns:
            bool: False if the cycle was skipped (shutdown, whitelist error, previous
            cycle running) or aborted by an unexpected error.
        """
        if self.state in (ProcessorState.SHUTTING_DOWN, ProcessorState.STOPPED):
            self.logging.debug("[QUEUE] Shutdown in progress, skipping cycle")
            return False

        if self.cycle_in_flight:
            self.skipped_cycles += 1
            if self.skipped_cycles % SKIP_WARNING_EVERY == 0:
                self.logging.warning("[QUEUE] Cycle skipped (%d total), previous still running", self.skipped_cycles)
            return False

        self.cycle_in_flight = True
        self.skipped_cycles = 0
        try:
            return await self._run_cycle()
        except Exception as e:
            self.logging.error("[QUEUE] Processing cycle failed: %s", e, exc_info=True)
            return False
        finally:
            self.cycle_in_flight = False

    async def _run_cycle(self) -> bool:
        # hot reload: the whitelist may change between cycles
        try:
            whitelist = await self._config_store.load_whitelist()
        except WhitelistError as e:
            self.logging.error("[QUEUE] Failed to reload whitelist, skipping cycle: %s", e)
            return False

        paths = self._work_queue.list_items()
        if not paths:
            self.logging.debug("[QUEUE] No new items to process")
            return True
        self.logging.info("[QUEUE] Found %d item(s) to process", len(paths))
        for index, path in enumerate(paths, start=1):
            if self.state == ProcessorState.SHUTTING_DOWN:
                self.logging.info("[QUEUE] Shutdown requested, leaving %d item(s) for later", len(paths) - index + 1)
                break
            self.logging.info("[QUEUE] Processing item %d/%d...", index, len(paths))
            await self.process_item(path, whitelist)
        self.logging.debug("[QUEUE] Processing cycle completed")
        return True

    async def process_item(self, path: Path, whitelist: WhitelistConfig) -> ItemStatus:
        """Process one queued item. Unexpected errors leave the item in place."""
        try:
            return await self._process_item(path, whitelist)
        except Exception as e:
            self.logging.error("[QUEUE] Error processing %s: %s", path.name, e, exc_info=True)
            return ItemStatus.KEPT

    async def _process_item(self, path: Path, whitelist: WhitelistConfig) -> ItemStatus:
        self.logging.info("[QUEUE] Processing item: %s", path.name)
        try:
            item = await self._work_queue.read_item(path)
        except FileNotFoundError:
            self.logging.warning("[QUEUE] Item %s vanished before processing", path.name)
            return ItemStatus.KEPT
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            self.logging.error("[QUEUE] Item %s is unreadable: %s", path.name, e)
            await self._work_queue.quarantine(path, "unreadable")
            return ItemStatus.QUARANTINED

        if await self._ledger.is_processed(item.id):
            self.logging.warning("[QUEUE] Item %s already processed, skipping (idempotence)", item.id)
            await self._work_queue.delete_item(path)
            return ItemStatus.ALREADY_PROCESSED

        if item.next_retry_at:
            retry_at = HelperFile.parse_iso(item.next_retry_at)
            if retry_at is not None and retry_at > HelperFile.utc_now():
                self.logging.debug("[QUEUE] Item %s waits for retry until %s", item.id, item.next_retry_at)
                return ItemStatus.DEFERRED

        # validation
        if not item.get_body():
            self.logging.error("[QUEUE] Item %s has an empty body", item.id)
            await self._work_queue.quarantine(path, "empty_body")
            return ItemStatus.QUARANTINED

        sender = item.get_sender()
        if sender is None:
            self.logging.error("[QUEUE] Item %s has an invalid sender format", item.id)
            await self._work_queue.quarantine(path, "invalid_sender")
            return ItemStatus.QUARANTINED

        self.logging.info("[QUEUE] From: %s", sender)
        self.logging.info("[QUEUE] Subject: %s", item.get_subject() or "(no subject)")

        if not whitelist.is_allowed(sender):
            self.logging.warning("[QUEUE] Sender not whitelisted, item rejected: %s (id %s)", sender, item.id)
            await self._work_queue.quarantine(path, "not_whitelisted")
            return ItemStatus.QUARANTINED

        # processing
        try:
            outcome = await asyncio.wait_for(self._request_service.process_request(item), timeout=self.pipeline_timeout)
        except asyncio.TimeoutError:
            return await self._handle_timeout(path, item)

        if not outcome.success:
            if outcome.failure_kind == FailureKind.VALIDATION:
                await self._work_queue.quarantine(path, outcome.failure_reason or "invalid_request")
                return ItemStatus.QUARANTINED
            self.logging.error(
                "[QUEUE] %s failed for %s, keeping it for the next cycle: %s",
                (outcome.flow_type.value if outcome.flow_type else "request").upper(), item.id, outcome.error,
            )
            return ItemStatus.KEPT

        self.logging.info("[QUEUE] Sending reply to %s...", sender)
        sent = await self._mail_client.do_send(sender, outcome.reply_subject, outcome.reply_body)
        if not sent.success:
            self.logging.error("[QUEUE] Failed to send reply for %s, keeping it: %s", item.id, sent.error)
            return ItemStatus.KEPT

        # ledger before delete
        await self._ledger.mark_processed(item.id)
        await self._work_queue.delete_item(path)
        self.logging.info("[QUEUE] Item %s processed and deleted", item.id, color="green")
        return ItemStatus.DONE

    async def _handle_timeout(self, path: Path, item: WorkItem) -> ItemStatus:
        if item.retry_count < self.max_retries:
            delay = self.retry_delays[min(item.retry_count, len(self.retry_delays) - 1)]
            item.retry_count += 1
            item.next_retry_at = HelperFile.to_iso(HelperFile.utc_now() + timedelta(seconds=delay))
            await self._work_queue.save_item(path, item)
            self.logging.warning("[QUEUE] Pipeline timeout, will retry (#%d) in %ss", item.retry_count, delay)
            return ItemStatus.RETRY_PENDING
        self.logging.error("[QUEUE] Pipeline timeout after %d retries", self.max_retries)
        await self._work_queue.quarantine(path, "max_retries_exceeded")
        return ItemStatus.QUARANTINED

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def start(self) -> None:
        await self._work_queue.ensure_dirs()
        self._stop_event.clear()
        self.state = ProcessorState.RUNNING
        self.logging.info("[QUEUE] Watching %s (every %ss)", self._work_queue.input_dir, self.poll_interval)

    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self.process_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    async def run_forever(self) -> None:
        """Tick every poll_interval until shutdown is requested.

        Each tick starts a cycle in the background, so a slow cycle makes the
        following ticks skip instead of piling up.
        """
        if self.state != ProcessorState.RUNNING:
            await self.start()
        while self.state == ProcessorState.RUNNING:
            self._spawn_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue

    def request_shutdown(self) -> None:
        if self.state in (ProcessorState.SHUTTING_DOWN, ProcessorState.STOPPED):
            return
        self.logging.info("[QUEUE] Shutdown requested")
        self.state = ProcessorState.SHUTTING_DOWN
        self._stop_event.set()

    async def wait_idle(self, max_wait: float = SHUTDOWN_MAX_WAIT_SECONDS) -> bool:
        """Wait for the in-flight cycle to finish.

        Returns:
            bool: True if no cycle is running anymore.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        while self.cycle_in_flight and loop.time() < deadline:
            self.logging.info("[QUEUE] Waiting for current cycle to finish...")
            await asyncio.sleep(min(1.0, max(0.0, deadline - loop.time())))
        if self.cycle_in_flight:
            self.logging.warning("[QUEUE] Cycle still running after %ss, forcing shutdown", max_wait)
            tasks = list(self._cycle_tasks)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.state = ProcessorState.STOPPED
            return False
        self.state = ProcessorState.STOPPED
        return True
