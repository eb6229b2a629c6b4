"""
Step Scheduler

Durable executor for journey steps. Every pending step is a row in the
schedule table with a fire time; a polling worker leases due rows
(several workers can share the table), fires them and writes the
follow-up row. Nothing lives only in process memory: after a restart
`recover()` re-derives an entry for every active journey that lacks one.

On fire, a step entry:
1. re-reads the journey and drops the entry if it is terminal or paused
2. holds the entry while the owning campaign is paused (or the drip inactive)
3. skips dispatch when the step conditions do not match, still advancing
4. picks A/B content when the step has a test and looks up the address
5. re-reads journey and campaign status, then dispatches with the
   idempotency key "journey_id:step_id"
6. on success advances the journey, bumps the counters and closes the
   entry in one transaction; on failure retries with exponential backoff
   and, once attempts run out, fails the step and pauses the journey

Only failed sends count against the attempt budget.
"""

import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from core.config import EngineConfig

from .conditions import matches
from .journey_state_machine import JourneyLocks, JourneyStateMachine, utcnow
from .models import (
    ABTest,
    ABTestStatus,
    Campaign,
    CampaignStatus,
    CustomerJourney,
    DripCampaign,
    JourneyStatus,
    ScheduledStep,
    ScheduleEntryKind,
    ScheduleEntryStatus,
    SequenceKind,
    StepDefinition,
    StepOutcome,
    StepType,
    Variant,
)
from .protocols import (
    AudienceResolutionError,
    CampaignNotFoundError,
    CampaignRepositoryProtocol,
    CampaignServiceError,
    ConcurrentModificationError,
    CustomerStoreProtocol,
    DispatchFailureError,
    DripCampaignNotFoundError,
    EmailChannelProtocol,
    InvalidTransitionError,
    MessageChannelProtocol,
)
from .variant_assigner import VariantAssigner

logger = logging.getLogger(__name__)

Sequence = Union[Campaign, DripCampaign]
LaunchHandler = Callable[[str], Awaitable[Any]]


def render_template(template: str, data: Dict[str, Any]) -> str:
    """Substitute {{variable}} placeholders with values"""
    if not template:
        return template

    def replace_var(match):
        var_name = match.group(1)
        # Support nested keys like customer.first_name
        value: Any = data
        for key in var_name.split('.'):
            if isinstance(value, dict):
                value = value.get(key, "")
            else:
                value = ""
                break
        return str(value) if value is not None else ""

    return re.sub(r'\{\{\s*(\w+(?:\.\w+)*)\s*\}\}', replace_var, template)


class StepScheduler:
    """Durable, time-aware step executor"""

    RECOVERY_PAGE_SIZE = 500
    COMMIT_RETRIES = 3

    def __init__(
        self,
        repository: CampaignRepositoryProtocol,
        state_machine: JourneyStateMachine,
        locks: JourneyLocks,
        variant_assigner: VariantAssigner,
        email_channel: Optional[EmailChannelProtocol] = None,
        message_channel: Optional[MessageChannelProtocol] = None,
        customer_store: Optional[CustomerStoreProtocol] = None,
        publisher=None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.locks = locks
        self.variant_assigner = variant_assigner
        self.email_channel = email_channel
        self.message_channel = message_channel
        self.customer_store = customer_store
        self.publisher = publisher
        self.config = config or EngineConfig()
        self.clock = clock or utcnow

        self._launch_handler: Optional[LaunchHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def set_launch_handler(self, handler: LaunchHandler) -> None:
        """Callback that resolves the audience of a date-triggered campaign"""
        self._launch_handler = handler

    # ====================
    # Scheduling
    # ====================

    async def schedule_current_step(
        self,
        journey: CustomerJourney,
        sequence: Optional[Sequence] = None,
        not_before: Optional[datetime] = None,
    ) -> Optional[ScheduledStep]:
        """Persist the fire-at entry for the journey's current step"""
        if journey.status != JourneyStatus.ACTIVE:
            return None

        if sequence is None:
            sequence = await self._load_sequence(journey)
        steps = sequence.steps
        if journey.current_step >= len(steps):
            return None

        step = steps[journey.current_step]
        fire_at = self._fire_time(journey, sequence, step)
        if not_before and fire_at < not_before:
            fire_at = not_before

        entry = ScheduledStep(
            kind=ScheduleEntryKind.STEP,
            campaign_id=journey.campaign_id,
            journey_id=journey.journey_id,
            sequence_kind=journey.sequence_kind,
            step_index=journey.current_step,
            step_id=step.step_id,
            fire_at=fire_at,
            idempotency_key=f"{journey.journey_id}:{step.step_id}",
        )
        created = await self.repository.create_schedule_entry(entry)
        if created is None:
            logger.debug(f"Step {journey.current_step} of {journey.journey_id} already scheduled")
            return await self.repository.get_live_entry(journey.journey_id)

        logger.debug(f"Scheduled {journey.journey_id} step {journey.current_step} at {fire_at.isoformat()}")
        return created

    async def schedule_launch(self, campaign: Campaign, fire_at: datetime) -> ScheduledStep:
        """Persist a deferred audience launch for a date-triggered campaign"""
        entry = ScheduledStep(
            kind=ScheduleEntryKind.LAUNCH,
            campaign_id=campaign.campaign_id,
            fire_at=fire_at,
            idempotency_key=f"launch:{campaign.campaign_id}",
        )
        created = await self.repository.create_schedule_entry(entry)
        logger.info(f"Campaign {campaign.campaign_id} launch scheduled at {fire_at.isoformat()}")
        return created or entry

    def _fire_time(self, journey: CustomerJourney, sequence: Sequence, step: StepDefinition) -> datetime:
        if journey.completed_steps:
            anchor = journey.last_activity
        else:
            anchor = journey.started_at
            if isinstance(sequence, Campaign):
                anchor += timedelta(hours=sequence.trigger.delay)
        return anchor + step.delay_delta()

    def retry_delay(self, attempts: int) -> timedelta:
        """Backoff before attempt `attempts + 1`"""
        seconds = self.config.retry_base_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.config.retry_max_seconds))

    # ====================
    # Worker
    # ====================

    async def run_due(self) -> int:
        """One scheduler tick: lease and fire every due entry"""
        entries = await self.repository.claim_due_entries(
            self.clock(), self.config.batch_size, self.config.lease_seconds
        )
        if not entries:
            return 0

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _run(entry: ScheduledStep):
            async with semaphore:
                try:
                    await self.fire(entry)
                except Exception as e:
                    logger.error(f"Error firing schedule entry {entry.entry_id}: {e}", exc_info=True)
                    await self._requeue(entry, str(e))

        await asyncio.gather(*(_run(entry) for entry in entries))
        logger.debug(f"Scheduler tick processed {len(entries)} entries")
        return len(entries)

    async def fire(self, entry: ScheduledStep) -> None:
        """Execute a leased entry"""
        if entry.kind == ScheduleEntryKind.LAUNCH:
            await self._fire_launch(entry)
            return

        async with self.locks.hold(entry.journey_id):
            await self._fire_step(entry)

    async def recover(self) -> int:
        """Re-create entries for active journeys that lost theirs"""
        recovered = 0
        after = None

        while True:
            journeys = await self.repository.list_unscheduled_active_journeys(
                limit=self.RECOVERY_PAGE_SIZE, after=after
            )
            for journey in journeys:
                async with self.locks.hold(journey.journey_id):
                    try:
                        if await self._recover_journey(journey):
                            recovered += 1
                    except CampaignServiceError as e:
                        logger.warning(f"Could not recover journey {journey.journey_id}: {e}")

            if len(journeys) < self.RECOVERY_PAGE_SIZE:
                break
            last = journeys[-1]
            after = (last.last_activity, last.journey_id)

        if recovered:
            logger.info(f"Recovered {recovered} journey schedule entries")
        return recovered

    async def _recover_journey(self, journey: CustomerJourney) -> bool:
        current = await self.repository.get_journey(journey.journey_id)
        if not current or current.status != JourneyStatus.ACTIVE:
            return False

        sequence = await self._load_sequence(current)
        if isinstance(sequence, Campaign) and sequence.status == CampaignStatus.COMPLETED:
            return False
        if current.current_step >= len(sequence.steps):
            await self.state_machine.complete(current.journey_id)
            return False

        return await self.schedule_current_step(current, sequence) is not None

    async def start(self) -> None:
        """Recover, then poll in the background"""
        if self._task:
            return
        await self.recover()
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Step scheduler started (poll={self.config.poll_interval_seconds}s, "
            f"batch={self.config.batch_size})"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Step scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_loop(self) -> None:
        while self._running:
            try:
                processed = await self.run_due()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)
                processed = 0

            # A full batch means more work is likely due
            if processed < self.config.batch_size:
                await asyncio.sleep(self.config.poll_interval_seconds)

    # ====================
    # Firing
    # ====================

    async def _fire_launch(self, entry: ScheduledStep) -> None:
        campaign = await self.repository.get_campaign(entry.campaign_id)
        if not campaign or campaign.status in (CampaignStatus.COMPLETED, CampaignStatus.DRAFT):
            await self._finish(entry, ScheduleEntryStatus.CANCELLED)
            return
        if campaign.status == CampaignStatus.PAUSED:
            await self._finish(entry, ScheduleEntryStatus.HELD)
            return
        if not self._launch_handler:
            raise RuntimeError("No launch handler registered")

        try:
            await self._launch_handler(campaign.campaign_id)
        except AudienceResolutionError as e:
            attempts = entry.attempts + 1
            if attempts >= self.config.max_dispatch_attempts:
                logger.error(f"Launch of campaign {campaign.campaign_id} failed permanently: {e}")
                await self._finish(entry, ScheduleEntryStatus.FAILED, str(e), attempts=attempts)
            else:
                await self.repository.reschedule_entry(
                    entry.entry_id, self.clock() + self.retry_delay(attempts), str(e), attempts=attempts
                )
            return

        await self._finish(entry, ScheduleEntryStatus.DONE)

    async def _fire_step(self, entry: ScheduledStep) -> None:
        journey = await self.repository.get_journey(entry.journey_id)
        if not journey or journey.status != JourneyStatus.ACTIVE:
            logger.debug(f"Dropping entry {entry.entry_id}: journey not active")
            await self._finish(entry, ScheduleEntryStatus.CANCELLED)
            return

        try:
            sequence = await self._load_sequence(journey)
        except (CampaignNotFoundError, DripCampaignNotFoundError) as e:
            logger.error(f"Entry {entry.entry_id} has no sequence: {e}")
            await self._finish(entry, ScheduleEntryStatus.FAILED, str(e))
            return

        if not await self._admit(entry, journey, sequence):
            return

        steps = sequence.steps
        if journey.current_step >= len(steps):
            await self.state_machine.complete(journey.journey_id)
            await self._finish(entry, ScheduleEntryStatus.DONE)
            return

        step = steps[journey.current_step]
        campaign_id = sequence.campaign_id if isinstance(sequence, Campaign) else None

        if not matches(step.conditions, journey.data):
            outcome = StepOutcome(
                entry_id=entry.entry_id,
                campaign_id=campaign_id,
                counters={"total_skipped": 1},
            )
            journey = await self._commit_step(entry, journey, step, steps, outcome, sent=False)
            if journey is None:
                return
            logger.info(f"Journey {journey.journey_id} skipped step {step.step_id}: conditions not met")
            if self.publisher:
                await self.publisher.publish_step_skipped(journey, step.step_id)
            await self._after_advance(journey, sequence)
            return

        subject, body, variant, test = await self._resolve_content(sequence, step, journey)

        try:
            address = await self._email_address(journey) if step.type == StepType.EMAIL else None
        except Exception as e:
            await self._handle_dispatch_failure(entry, journey, step, sequence, str(e))
            return

        # Another process may have unsubscribed, paused or stopped in the meantime
        journey = await self.repository.get_journey(entry.journey_id)
        if journey and journey.status == JourneyStatus.ACTIVE:
            sequence = await self._load_sequence(journey)
        if not await self._admit(entry, journey, sequence):
            return

        try:
            await self._dispatch(step, journey, subject, body, entry.idempotency_key, address)
        except Exception as e:
            await self._handle_dispatch_failure(entry, journey, step, sequence, str(e))
            return

        counted = test is not None and variant is not None and test.status == ABTestStatus.RUNNING
        outcome = StepOutcome(
            entry_id=entry.entry_id,
            campaign_id=campaign_id,
            counters={"total_sent": 1, "total_delivered": 1},
            last_run=self.clock(),
            test_id=test.test_id if counted else None,
            variant=variant if counted else None,
            variant_counters={"delivered": 1} if counted else {},
        )
        journey = await self._commit_step(entry, journey, step, steps, outcome, sent=True)
        if journey is None:
            return

        logger.info(
            f"Journey {journey.journey_id} dispatched step {step.step_id} via {step.type.value}"
            + (f" (variant {variant.value})" if variant else "")
        )
        if self.publisher:
            await self.publisher.publish_step_dispatched(journey, step.step_id, step.type.value, variant)
        await self._after_advance(journey, sequence)

    async def _admit(
        self, entry: ScheduledStep, journey: Optional[CustomerJourney], sequence: Sequence
    ) -> bool:
        """Whether the entry may fire now; otherwise it is closed or held"""
        if not journey or journey.status != JourneyStatus.ACTIVE:
            logger.debug(f"Dropping entry {entry.entry_id}: journey not active")
            await self._finish(entry, ScheduleEntryStatus.CANCELLED)
            return False

        if entry.step_index != journey.current_step:
            # Advanced before the entry was closed; make sure the follow-up exists
            logger.debug(f"Dropping stale entry {entry.entry_id} (step {entry.step_index})")
            await self._finish(entry, ScheduleEntryStatus.CANCELLED)
            await self.schedule_current_step(journey, sequence)
            return False

        if isinstance(sequence, Campaign):
            if sequence.status == CampaignStatus.PAUSED:
                await self._finish(entry, ScheduleEntryStatus.HELD)
                return False
            if sequence.status != CampaignStatus.ACTIVE:
                await self._finish(entry, ScheduleEntryStatus.CANCELLED)
                return False
        elif not sequence.is_active:
            await self._finish(entry, ScheduleEntryStatus.HELD)
            return False

        return True

    async def _commit_step(
        self,
        entry: ScheduledStep,
        journey: CustomerJourney,
        step: StepDefinition,
        steps: List[StepDefinition],
        outcome: StepOutcome,
        sent: bool,
    ) -> Optional[CustomerJourney]:
        """
        Advance past a handled step, writing its counters and closing the
        entry in the same transaction. Returns None when the journey left
        `active` first: a send that already happened is still counted.
        """
        for _ in range(self.COMMIT_RETRIES):
            try:
                return await self.state_machine.advance(
                    journey.journey_id, step.step_id, success=sent, steps=steps, outcome=outcome
                )
            except ConcurrentModificationError:
                logger.debug(f"Journey {journey.journey_id} moved while committing {step.step_id}, retrying")
            except InvalidTransitionError as e:
                if sent:
                    logger.info(
                        f"Journey {journey.journey_id} left active during dispatch of "
                        f"{step.step_id}; recording the send only"
                    )
                    await self.repository.record_step_outcome(outcome)
                else:
                    logger.debug(f"Not skipping {step.step_id}: {e}")
                    await self._finish(entry, ScheduleEntryStatus.CANCELLED)
                return None

        raise ConcurrentModificationError(
            f"Journey {journey.journey_id} kept changing while committing {step.step_id}"
        )

    async def _after_advance(self, journey: CustomerJourney, sequence: Sequence) -> None:
        if journey.status == JourneyStatus.COMPLETED:
            if self.publisher:
                await self.publisher.publish_journey_completed(journey)
            return
        await self.schedule_current_step(journey, sequence)

    async def _handle_dispatch_failure(
        self,
        entry: ScheduledStep,
        journey: CustomerJourney,
        step: StepDefinition,
        sequence: Sequence,
        error: str,
    ) -> None:
        attempts = entry.attempts + 1
        if attempts < self.config.max_dispatch_attempts:
            fire_at = self.clock() + self.retry_delay(attempts)
            await self.repository.reschedule_entry(entry.entry_id, fire_at, error, attempts=attempts)
            logger.warning(
                f"Dispatch of {entry.idempotency_key} failed (attempt {attempts}/"
                f"{self.config.max_dispatch_attempts}), retrying at {fire_at.isoformat()}: {error}"
            )
            return

        logger.error(
            f"Dispatch of {entry.idempotency_key} failed after {attempts} attempts, "
            f"pausing journey: {error}"
        )
        await self._finish(entry, ScheduleEntryStatus.FAILED, error, attempts=attempts)
        journey = await self.state_machine.pause(journey.journey_id, failed_step_id=step.step_id)
        if isinstance(sequence, Campaign):
            await self.repository.increment_campaign_stats(sequence.campaign_id, {"total_failed": 1})
        if self.publisher:
            await self.publisher.publish_step_failed(journey, step.step_id, error, attempts)

    async def _requeue(self, entry: ScheduledStep, error: str) -> None:
        try:
            await self.repository.reschedule_entry(
                entry.entry_id, self.clock() + self.retry_delay(entry.attempts + 1), error
            )
        except Exception as e:
            # Lease expiry reclaims the entry
            logger.error(f"Could not requeue entry {entry.entry_id}: {e}")

    async def _finish(
        self,
        entry: ScheduledStep,
        status: ScheduleEntryStatus,
        error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        await self.repository.update_schedule_entry_status(entry.entry_id, status, error, attempts=attempts)

    # ====================
    # Content and dispatch
    # ====================

    async def _load_sequence(self, journey: CustomerJourney) -> Sequence:
        if journey.sequence_kind == SequenceKind.DRIP:
            drip = await self.repository.get_drip_campaign(journey.campaign_id)
            if not drip:
                raise DripCampaignNotFoundError(f"Drip campaign not found: {journey.campaign_id}")
            return drip

        campaign = await self.repository.get_campaign(journey.campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {journey.campaign_id}")
        return campaign

    async def _resolve_content(
        self, sequence: Sequence, step: StepDefinition, journey: CustomerJourney
    ) -> Tuple[str, str, Optional[Variant], Optional[ABTest]]:
        if not isinstance(sequence, Campaign):
            return step.subject, step.content, None, None

        test = await self.repository.get_ab_test_for_step(sequence.campaign_id, step.step_id)
        if not test:
            return step.subject, step.content, None, None

        if test.status == ABTestStatus.COMPLETED and test.winner:
            variant = test.winner
        else:
            variant = self.variant_assigner.assign(test.test_id, journey.customer_id, test.split_ratio)
        content = test.content_for(variant)
        return content.subject or step.subject, content.content or step.content, variant, test

    async def _dispatch(
        self,
        step: StepDefinition,
        journey: CustomerJourney,
        subject: str,
        body: str,
        idempotency_key: Optional[str],
        address: Optional[str] = None,
    ) -> None:
        variables = {**step.variables, **journey.data}
        subject = render_template(subject, variables)
        body = render_template(body, variables)

        if step.type == StepType.EMAIL:
            if not self.email_channel:
                raise DispatchFailureError("Email channel is not configured")
            ok = await self.email_channel.send(
                address, subject, body, variables, idempotency_key=idempotency_key
            )
        else:
            if not self.message_channel:
                raise DispatchFailureError("Message channel is not configured")
            ok = await self.message_channel.send(
                journey.customer_id, subject, body, idempotency_key=idempotency_key
            )

        if not ok:
            raise DispatchFailureError(f"{step.type.value} channel rejected {idempotency_key}")

    async def _email_address(self, journey: CustomerJourney) -> str:
        address = journey.data.get("email")
        if not address and self.customer_store:
            contact = await self.customer_store.get_contact(journey.customer_id)
            address = (contact or {}).get("email")
        if not address:
            raise DispatchFailureError(f"No email address for customer {journey.customer_id}")
        return address


__all__ = ["StepScheduler", "render_template"]
