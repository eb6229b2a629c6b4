"""
Campaign Service Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from core.config import get_settings
from core.postgres_client import PostgresClientWrapper

from .models import (
    ABTest,
    ABTestStatus,
    Audience,
    Campaign,
    CampaignStats,
    CampaignStatus,
    CampaignStep,
    CampaignTrigger,
    CampaignType,
    CustomerJourney,
    DripCampaign,
    DripStep,
    JourneyStatus,
    ScheduledStep,
    ScheduleEntryKind,
    ScheduleEntryStatus,
    SequenceKind,
    StepOutcome,
    TriggerType,
    Variant,
    VariantContent,
    VariantStats,
)
from .protocols import ConcurrentModificationError, DuplicateJourneyError

logger = logging.getLogger(__name__)


class ExtendedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def json_dumps(obj):
    """JSON dumps with Decimal and datetime support"""
    return json.dumps(obj, cls=ExtendedJSONEncoder)


def _json(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


_LIVE_JOURNEY = ("active", "paused")
_LIVE_ENTRY = ("pending", "processing", "held")

# Counter columns that may be incremented; anything else is rejected
CAMPAIGN_COUNTERS = {
    "total_sent",
    "total_delivered",
    "total_opened",
    "total_clicked",
    "total_replied",
    "total_converted",
    "total_failed",
    "total_skipped",
}
VARIANT_COUNTERS = {"delivered", "opened", "clicked", "converted"}


class CampaignRepository:
    """Campaign service data repository - PostgreSQL (asyncpg)"""

    def __init__(self, db: Optional[PostgresClientWrapper] = None):
        if db is None:
            infra = get_settings().infra
            logger.info(f"Connecting to PostgreSQL at {infra.postgres_host}:{infra.postgres_port}")
            db = PostgresClientWrapper(
                "campaign_service",
                dsn=infra.postgres_dsn,
                min_size=infra.postgres_min_pool,
                max_size=infra.postgres_max_pool,
            )
        self.db = db
        self.schema = "campaign"

        # Table names
        self.campaigns_table = "campaigns"
        self.drips_table = "drip_campaigns"
        self.journeys_table = "customer_journeys"
        self.schedule_table = "scheduled_steps"
        self.ab_tests_table = "ab_tests"

    async def initialize(self):
        """Initialize database connection"""
        await self.db.connect()
        logger.info("Campaign repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Campaign repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        result = await self.db.health_check()
        return bool(result and result.get("healthy"))

    # ====================
    # Campaign Registry
    # ====================

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        """Save a campaign definition and status; stats columns are untouched"""
        try:
            now = datetime.now(timezone.utc)

            query = f'''
                INSERT INTO {self.schema}.{self.campaigns_table} (
                    campaign_id, organization_id, name, description,
                    campaign_type, status, trigger_type, trigger, steps, audience,
                    created_by, started_at, paused_at, completed_at,
                    created_at, updated_at
                ) VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb, $10::jsonb,
                    $11, $12, $13, $14, $15, $16
                )
                ON CONFLICT (campaign_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    campaign_type = EXCLUDED.campaign_type,
                    status = EXCLUDED.status,
                    trigger_type = EXCLUDED.trigger_type,
                    trigger = EXCLUDED.trigger,
                    steps = EXCLUDED.steps,
                    audience = EXCLUDED.audience,
                    started_at = EXCLUDED.started_at,
                    paused_at = EXCLUDED.paused_at,
                    completed_at = EXCLUDED.completed_at,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
            '''

            params = [
                campaign.campaign_id,
                campaign.organization_id,
                campaign.name,
                campaign.description,
                campaign.campaign_type.value,
                campaign.status.value,
                campaign.trigger.type.value,
                json_dumps(campaign.trigger.model_dump(mode="json")),
                json_dumps([s.model_dump(mode="json") for s in campaign.steps]),
                json_dumps(campaign.audience.model_dump(mode="json")),
                campaign.created_by,
                campaign.started_at,
                campaign.paused_at,
                campaign.completed_at,
                campaign.created_at or now,
                now,
            ]

            async with self.db:
                result = await self.db.query_row(query, params=params)

            return self._row_to_campaign(result) if result else campaign

        except Exception as e:
            logger.error(f"Error saving campaign: {e}", exc_info=True)
            raise

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE campaign_id = $1
            '''

            async with self.db:
                result = await self.db.query_row(query, params=[campaign_id])

            return self._row_to_campaign(result) if result else None

        except Exception as e:
            logger.error(f"Error getting campaign {campaign_id}: {e}")
            raise

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[CampaignStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        """List campaigns for a tenant"""
        try:
            conditions = ["organization_id = $1"]
            params: List[Any] = [organization_id]

            if status:
                params.append(status.value)
                conditions.append(f"status = ${len(params)}")

            where_clause = " AND ".join(conditions)

            count_query = f'''
                SELECT COUNT(*) as total FROM {self.schema}.{self.campaigns_table}
                WHERE {where_clause}
            '''
            list_query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            '''

            async with self.db:
                count_result = await self.db.query_row(count_query, params=params)
                total = count_result.get("total", 0) if count_result else 0
                results = await self.db.query(list_query, params=params + [limit, offset])

            return [self._row_to_campaign(r) for r in results], total

        except Exception as e:
            logger.error(f"Error listing campaigns: {e}")
            raise

    async def list_active_campaigns_by_trigger(
        self, organization_id: str, trigger_type: TriggerType
    ) -> List[Campaign]:
        """Active campaigns of one tenant listening for a trigger type"""
        try:
            params: List[Any] = [trigger_type.value, organization_id]
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE status = 'active' AND trigger_type = $1 AND organization_id = $2
            '''

            async with self.db:
                results = await self.db.query(query, params=params)

            return [self._row_to_campaign(r) for r in results]

        except Exception as e:
            logger.error(f"Error listing {trigger_type.value} campaigns: {e}")
            raise

    async def increment_campaign_stats(
        self,
        campaign_id: str,
        increments: Dict[str, int],
        revenue: Optional[Decimal] = None,
        last_run: Optional[datetime] = None,
    ) -> None:
        """Atomically add to campaign counters"""
        statement = self._campaign_stats_statement(campaign_id, increments, revenue, last_run)
        if not statement:
            return

        try:
            query, params = statement
            async with self.db:
                await self.db.execute(query, params=params)

        except Exception as e:
            logger.error(f"Error incrementing stats for {campaign_id}: {e}", exc_info=True)
            raise

    def _campaign_stats_statement(
        self,
        campaign_id: str,
        increments: Dict[str, int],
        revenue: Optional[Decimal] = None,
        last_run: Optional[datetime] = None,
    ) -> Optional[Tuple[str, List[Any]]]:
        unknown = set(increments) - CAMPAIGN_COUNTERS
        if unknown:
            raise ValueError(f"Unknown campaign counters: {sorted(unknown)}")

        sets = []
        params: List[Any] = [campaign_id]
        for column, amount in increments.items():
            params.append(int(amount))
            sets.append(f"{column} = {column} + ${len(params)}")
        if revenue:
            params.append(Decimal(revenue))
            sets.append(f"revenue = revenue + ${len(params)}")
        if last_run:
            params.append(last_run)
            sets.append(f"last_run = ${len(params)}")
        if not sets:
            return None

        query = f'''
            UPDATE {self.schema}.{self.campaigns_table}
            SET {", ".join(sets)}
            WHERE campaign_id = $1
        '''
        return query, params

    # ====================
    # Drip Campaigns
    # ====================

    async def save_drip_campaign(self, drip: DripCampaign) -> DripCampaign:
        """Save a drip campaign"""
        try:
            now = datetime.now(timezone.utc)
            query = f'''
                INSERT INTO {self.schema}.{self.drips_table} (
                    drip_id, organization_id, name, description, steps,
                    is_active, created_by, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9)
                ON CONFLICT (drip_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    steps = EXCLUDED.steps,
                    is_active = EXCLUDED.is_active,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
            '''
            params = [
                drip.drip_id,
                drip.organization_id,
                drip.name,
                drip.description,
                json_dumps([s.model_dump(mode="json") for s in drip.steps]),
                drip.is_active,
                drip.created_by,
                drip.created_at or now,
                now,
            ]

            async with self.db:
                result = await self.db.query_row(query, params=params)

            return self._row_to_drip(result) if result else drip

        except Exception as e:
            logger.error(f"Error saving drip campaign: {e}", exc_info=True)
            raise

    async def get_drip_campaign(self, drip_id: str) -> Optional[DripCampaign]:
        """Get drip campaign by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.drips_table}
                WHERE drip_id = $1
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[drip_id])

            return self._row_to_drip(result) if result else None

        except Exception as e:
            logger.error(f"Error getting drip campaign {drip_id}: {e}")
            raise

    # ====================
    # Journeys
    # ====================

    async def create_journey(self, journey: CustomerJourney) -> CustomerJourney:
        """Insert a journey; the live-pair unique index rejects duplicates"""
        query = f'''
            INSERT INTO {self.schema}.{self.journeys_table} (
                journey_id, organization_id, campaign_id, sequence_kind,
                customer_id, current_step, status, completed_steps,
                skipped_steps, failed_step_id, data, version,
                started_at, last_activity, paused_at, completed_at
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb, $10,
                $11::jsonb, $12, $13, $14, $15, $16
            )
            RETURNING *
        '''
        params = [
            journey.journey_id,
            journey.organization_id,
            journey.campaign_id,
            journey.sequence_kind.value,
            journey.customer_id,
            journey.current_step,
            journey.status.value,
            json_dumps(journey.completed_steps),
            json_dumps(journey.skipped_steps),
            journey.failed_step_id,
            json_dumps(journey.data),
            journey.version,
            journey.started_at,
            journey.last_activity,
            journey.paused_at,
            journey.completed_at,
        ]

        try:
            async with self.db:
                result = await self.db.query_row(query, params=params)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateJourneyError(
                f"Customer {journey.customer_id} already has a live journey in {journey.campaign_id}"
            ) from e
        except Exception as e:
            logger.error(f"Error creating journey: {e}", exc_info=True)
            raise

        return self._row_to_journey(result) if result else journey

    async def get_journey(self, journey_id: str) -> Optional[CustomerJourney]:
        """Get journey by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.journeys_table}
                WHERE journey_id = $1
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[journey_id])

            return self._row_to_journey(result) if result else None

        except Exception as e:
            logger.error(f"Error getting journey {journey_id}: {e}")
            raise

    async def get_journey_for_customer(
        self, campaign_id: str, customer_id: str
    ) -> Optional[CustomerJourney]:
        """Live journey for the pair, else the most recent one"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.journeys_table}
                WHERE campaign_id = $1 AND customer_id = $2
                ORDER BY (status IN ('active', 'paused')) DESC, started_at DESC
                LIMIT 1
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[campaign_id, str(customer_id)])

            return self._row_to_journey(result) if result else None

        except Exception as e:
            logger.error(f"Error getting journey {campaign_id}/{customer_id}: {e}")
            raise

    async def update_journey(
        self, journey: CustomerJourney, expected_version: int
    ) -> CustomerJourney:
        """Write a journey if its stored version still matches"""
        try:
            query, params = self._journey_update_statement(journey, expected_version)
            async with self.db:
                result = await self.db.query_row(query, params=params)

        except Exception as e:
            logger.error(f"Error updating journey {journey.journey_id}: {e}", exc_info=True)
            raise

        if not result:
            raise ConcurrentModificationError(
                f"Journey {journey.journey_id} changed since version {expected_version}"
            )
        return self._row_to_journey(result)

    def _journey_update_statement(
        self, journey: CustomerJourney, expected_version: int
    ) -> Tuple[str, List[Any]]:
        query = f'''
            UPDATE {self.schema}.{self.journeys_table} SET
                current_step = $3,
                status = $4,
                completed_steps = $5::jsonb,
                skipped_steps = $6::jsonb,
                failed_step_id = $7,
                data = $8::jsonb,
                version = $9,
                last_activity = $10,
                paused_at = $11,
                completed_at = $12
            WHERE journey_id = $1 AND version = $2
            RETURNING *
        '''
        params = [
            journey.journey_id,
            expected_version,
            journey.current_step,
            journey.status.value,
            json_dumps(journey.completed_steps),
            json_dumps(journey.skipped_steps),
            journey.failed_step_id,
            json_dumps(journey.data),
            journey.version,
            journey.last_activity,
            journey.paused_at,
            journey.completed_at,
        ]
        return query, params

    async def record_step_outcome(
        self,
        outcome: StepOutcome,
        journey: Optional[CustomerJourney] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[CustomerJourney]:
        """
        Write a handled step in one transaction: the advanced journey (when
        given, under its version check), campaign and variant counters, and
        the closed schedule entry. Nothing is written if the journey moved.
        """
        statements = []
        if outcome.campaign_id:
            statements.append(self._campaign_stats_statement(
                outcome.campaign_id, outcome.counters, last_run=outcome.last_run
            ))
        if outcome.test_id and outcome.variant:
            statements.append(self._variant_stats_statement(
                outcome.test_id, outcome.variant, outcome.variant_counters
            ))
        statements.append((
            f'''
                UPDATE {self.schema}.{self.schedule_table} SET
                    status = $2,
                    locked_until = NULL,
                    updated_at = NOW()
                WHERE entry_id = $1
            ''',
            [outcome.entry_id, outcome.entry_status.value],
        ))

        try:
            async with self.db.transaction() as conn:
                row = None
                if journey is not None:
                    query, params = self._journey_update_statement(journey, expected_version)
                    row = await conn.fetchrow(query, *params)
                    if not row:
                        raise ConcurrentModificationError(
                            f"Journey {journey.journey_id} changed since version {expected_version}"
                        )
                for statement in statements:
                    if statement:
                        query, params = statement
                        await conn.execute(query, *params)

        except ConcurrentModificationError:
            raise
        except Exception as e:
            logger.error(f"Error recording outcome of entry {outcome.entry_id}: {e}", exc_info=True)
            raise

        return self._row_to_journey(dict(row)) if row else None

    async def count_live_journeys(self, campaign_id: str) -> int:
        """Number of active or paused journeys for a campaign"""
        try:
            query = f'''
                SELECT COUNT(*) as total FROM {self.schema}.{self.journeys_table}
                WHERE campaign_id = $1 AND status = ANY($2)
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[campaign_id, list(_LIVE_JOURNEY)])

            return result.get("total", 0) if result else 0

        except Exception as e:
            logger.error(f"Error counting journeys for {campaign_id}: {e}")
            raise

    async def list_live_journeys_for_customer(
        self, customer_id: str, organization_id: Optional[str] = None
    ) -> List[CustomerJourney]:
        """Active or paused journeys of a customer across campaigns"""
        try:
            params: List[Any] = [str(customer_id), list(_LIVE_JOURNEY)]
            query = f'''
                SELECT * FROM {self.schema}.{self.journeys_table}
                WHERE customer_id = $1 AND status = ANY($2)
            '''
            if organization_id:
                params.append(organization_id)
                query += " AND organization_id = $3"

            async with self.db:
                results = await self.db.query(query, params=params)

            return [self._row_to_journey(r) for r in results]

        except Exception as e:
            logger.error(f"Error listing journeys for customer {customer_id}: {e}")
            raise

    async def list_unscheduled_active_journeys(
        self, limit: int = 500, after: Optional[Tuple[datetime, str]] = None
    ) -> List[CustomerJourney]:
        """
        Active journeys that have no live schedule entry, ordered by
        (last_activity, journey_id). `after` is the keyset cursor of the
        previous page. Journeys of completed campaigns are left out.
        """
        try:
            params: List[Any] = [list(_LIVE_ENTRY), limit]
            cursor = ""
            if after:
                params.extend(after)
                cursor = "AND (j.last_activity, j.journey_id) > ($3, $4)"
            query = f'''
                SELECT j.* FROM {self.schema}.{self.journeys_table} j
                WHERE j.status = 'active'
                  AND NOT EXISTS (
                      SELECT 1 FROM {self.schema}.{self.schedule_table} s
                      WHERE s.journey_id = j.journey_id AND s.status = ANY($1)
                  )
                  AND NOT EXISTS (
                      SELECT 1 FROM {self.schema}.{self.campaigns_table} c
                      WHERE c.campaign_id = j.campaign_id AND c.status = 'completed'
                  )
                  {cursor}
                ORDER BY j.last_activity, j.journey_id
                LIMIT $2
            '''
            async with self.db:
                results = await self.db.query(query, params=params)

            return [self._row_to_journey(r) for r in results]

        except Exception as e:
            logger.error(f"Error listing unscheduled journeys: {e}")
            raise

    # ====================
    # Durable Schedule
    # ====================

    async def create_schedule_entry(self, entry: ScheduledStep) -> Optional[ScheduledStep]:
        """Insert an entry; None when a live entry for the same step exists"""
        try:
            query = f'''
                INSERT INTO {self.schema}.{self.schedule_table} (
                    entry_id, kind, campaign_id, journey_id, sequence_kind,
                    step_index, step_id, fire_at, status, attempts,
                    idempotency_key, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $12)
                ON CONFLICT DO NOTHING
                RETURNING *
            '''
            params = [
                entry.entry_id,
                entry.kind.value,
                entry.campaign_id,
                entry.journey_id,
                entry.sequence_kind.value,
                entry.step_index,
                entry.step_id,
                entry.fire_at,
                entry.status.value,
                entry.attempts,
                entry.idempotency_key,
                datetime.now(timezone.utc),
            ]
            async with self.db:
                result = await self.db.query_row(query, params=params)

            return self._row_to_entry(result) if result else None

        except Exception as e:
            logger.error(f"Error creating schedule entry: {e}", exc_info=True)
            raise

    async def claim_due_entries(
        self, now: datetime, limit: int, lease_seconds: int
    ) -> List[ScheduledStep]:
        """
        Lease due entries for this worker.

        Pending entries whose fire time passed and processing entries whose
        lease expired are taken with FOR UPDATE SKIP LOCKED, so concurrent
        workers never receive the same entry.
        """
        try:
            query = f'''
                UPDATE {self.schema}.{self.schedule_table} AS s SET
                    status = 'processing',
                    locked_until = $3,
                    updated_at = $1
                WHERE s.entry_id IN (
                    SELECT entry_id FROM {self.schema}.{self.schedule_table}
                    WHERE (status = 'pending' AND fire_at <= $1)
                       OR (status = 'processing' AND locked_until < $1)
                    ORDER BY fire_at
                    LIMIT $2
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING s.*
            '''
            locked_until = now + timedelta(seconds=lease_seconds)
            async with self.db:
                results = await self.db.query(query, params=[now, limit, locked_until])

            entries = [self._row_to_entry(r) for r in results]
            return sorted(entries, key=lambda e: e.fire_at)

        except Exception as e:
            logger.error(f"Error claiming due entries: {e}", exc_info=True)
            raise

    async def update_schedule_entry_status(
        self,
        entry_id: str,
        status: ScheduleEntryStatus,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        """Move an entry to a new status and drop its lease"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.schedule_table} SET
                    status = $2,
                    last_error = COALESCE($3, last_error),
                    attempts = COALESCE($4, attempts),
                    locked_until = NULL,
                    updated_at = NOW()
                WHERE entry_id = $1
            '''
            async with self.db:
                await self.db.execute(query, params=[entry_id, status.value, last_error, attempts])

        except Exception as e:
            logger.error(f"Error updating schedule entry {entry_id}: {e}")
            raise

    async def reschedule_entry(
        self,
        entry_id: str,
        fire_at: datetime,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        """Return an entry to pending with a new fire time"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.schedule_table} SET
                    status = 'pending',
                    fire_at = $2,
                    last_error = $3,
                    attempts = COALESCE($4, attempts),
                    locked_until = NULL,
                    updated_at = NOW()
                WHERE entry_id = $1
            '''
            async with self.db:
                await self.db.execute(query, params=[entry_id, fire_at, last_error, attempts])

        except Exception as e:
            logger.error(f"Error rescheduling entry {entry_id}: {e}")
            raise

    async def release_held_entries(self, campaign_id: str, fire_at: datetime) -> int:
        """Return held entries of a campaign to pending"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.schedule_table} SET
                    status = 'pending',
                    fire_at = LEAST(fire_at, $2),
                    updated_at = NOW()
                WHERE campaign_id = $1 AND status = 'held'
            '''
            async with self.db:
                return await self.db.execute(query, params=[campaign_id, fire_at])

        except Exception as e:
            logger.error(f"Error releasing held entries for {campaign_id}: {e}")
            raise

    async def cancel_journey_entries(self, journey_id: str) -> int:
        """Cancel pending and held entries of a journey"""
        return await self._cancel_entries("journey_id", journey_id)

    async def cancel_campaign_entries(self, campaign_id: str) -> int:
        """Cancel pending and held entries of a campaign"""
        return await self._cancel_entries("campaign_id", campaign_id)

    async def _cancel_entries(self, column: str, value: str) -> int:
        # Entries mid-dispatch stay leased; the fire path re-checks status
        try:
            query = f'''
                UPDATE {self.schema}.{self.schedule_table} SET
                    status = 'cancelled',
                    locked_until = NULL,
                    updated_at = NOW()
                WHERE {column} = $1 AND status IN ('pending', 'held')
            '''
            async with self.db:
                return await self.db.execute(query, params=[value])

        except Exception as e:
            logger.error(f"Error cancelling entries for {column}={value}: {e}")
            raise

    async def get_live_entry(self, journey_id: str) -> Optional[ScheduledStep]:
        """Live entry of a journey, if any"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.schedule_table}
                WHERE journey_id = $1 AND status = ANY($2)
                ORDER BY fire_at
                LIMIT 1
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[journey_id, list(_LIVE_ENTRY)])

            return self._row_to_entry(result) if result else None

        except Exception as e:
            logger.error(f"Error getting live entry for {journey_id}: {e}")
            raise

    # ====================
    # A/B Tests
    # ====================

    async def save_ab_test(self, test: ABTest) -> ABTest:
        """Save an A/B test; variant counters are untouched"""
        try:
            query = f'''
                INSERT INTO {self.schema}.{self.ab_tests_table} (
                    test_id, organization_id, campaign_id, step_id,
                    variant_a, variant_b, split_ratio, status,
                    winner, confidence, p_value, created_at, completed_at
                ) VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9, $10, $11, $12, $13)
                ON CONFLICT (test_id) DO UPDATE SET
                    variant_a = EXCLUDED.variant_a,
                    variant_b = EXCLUDED.variant_b,
                    split_ratio = EXCLUDED.split_ratio,
                    status = EXCLUDED.status,
                    winner = EXCLUDED.winner,
                    confidence = EXCLUDED.confidence,
                    p_value = EXCLUDED.p_value,
                    completed_at = EXCLUDED.completed_at
                RETURNING *
            '''
            params = [
                test.test_id,
                test.organization_id,
                test.campaign_id,
                test.step_id,
                json_dumps(test.variant_a.model_dump()),
                json_dumps(test.variant_b.model_dump()),
                test.split_ratio,
                test.status.value,
                test.winner.value if test.winner else None,
                test.confidence,
                test.p_value,
                test.created_at,
                test.completed_at,
            ]
            async with self.db:
                result = await self.db.query_row(query, params=params)

            return self._row_to_ab_test(result) if result else test

        except Exception as e:
            logger.error(f"Error saving A/B test: {e}", exc_info=True)
            raise

    async def get_ab_test(self, test_id: str) -> Optional[ABTest]:
        """Get A/B test by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.ab_tests_table}
                WHERE test_id = $1
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[test_id])

            return self._row_to_ab_test(result) if result else None

        except Exception as e:
            logger.error(f"Error getting A/B test {test_id}: {e}")
            raise

    async def get_ab_test_for_step(self, campaign_id: str, step_id: str) -> Optional[ABTest]:
        """A/B test attached to a campaign step"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.ab_tests_table}
                WHERE campaign_id = $1 AND step_id = $2
            '''
            async with self.db:
                result = await self.db.query_row(query, params=[campaign_id, step_id])

            return self._row_to_ab_test(result) if result else None

        except Exception as e:
            logger.error(f"Error getting A/B test for {campaign_id}/{step_id}: {e}")
            raise

    async def increment_variant_stats(
        self, test_id: str, variant: Variant, increments: Dict[str, int]
    ) -> None:
        """Atomically add to a variant's counters"""
        statement = self._variant_stats_statement(test_id, variant, increments)
        if not statement:
            return

        try:
            query, params = statement
            async with self.db:
                await self.db.execute(query, params=params)

        except Exception as e:
            logger.error(f"Error incrementing variant stats for {test_id}: {e}")
            raise

    def _variant_stats_statement(
        self, test_id: str, variant: Variant, increments: Dict[str, int]
    ) -> Optional[Tuple[str, List[Any]]]:
        unknown = set(increments) - VARIANT_COUNTERS
        if unknown:
            raise ValueError(f"Unknown variant counters: {sorted(unknown)}")

        prefix = "a_" if variant == Variant.A else "b_"
        sets = []
        params: List[Any] = [test_id]
        for name, amount in increments.items():
            params.append(int(amount))
            column = f"{prefix}{name}"
            sets.append(f"{column} = {column} + ${len(params)}")
        if not sets:
            return None

        query = f'''
            UPDATE {self.schema}.{self.ab_tests_table}
            SET {", ".join(sets)}
            WHERE test_id = $1
        '''
        return query, params

    # ====================
    # Row Converters
    # ====================

    def _row_to_campaign(self, row: Dict[str, Any]) -> Campaign:
        """Convert database row to Campaign model"""
        stats = CampaignStats(
            total_sent=row.get("total_sent", 0),
            total_delivered=row.get("total_delivered", 0),
            total_opened=row.get("total_opened", 0),
            total_clicked=row.get("total_clicked", 0),
            total_replied=row.get("total_replied", 0),
            total_converted=row.get("total_converted", 0),
            total_failed=row.get("total_failed", 0),
            total_skipped=row.get("total_skipped", 0),
            revenue=Decimal(str(row.get("revenue") or 0)),
            last_run=row.get("last_run"),
        )

        # Stored definitions were validated on the way in
        return Campaign.model_construct(
            campaign_id=row.get("campaign_id"),
            organization_id=row.get("organization_id"),
            name=row.get("name"),
            description=row.get("description"),
            campaign_type=CampaignType(row.get("campaign_type")),
            status=CampaignStatus(row.get("status")),
            trigger=CampaignTrigger(**_json(row.get("trigger"), {})),
            steps=[CampaignStep(**s) for s in _json(row.get("steps"), [])],
            audience=Audience(**_json(row.get("audience"), {})),
            stats=stats,
            created_by=row.get("created_by"),
            started_at=row.get("started_at"),
            paused_at=row.get("paused_at"),
            completed_at=row.get("completed_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_drip(self, row: Dict[str, Any]) -> DripCampaign:
        """Convert database row to DripCampaign model"""
        return DripCampaign.model_construct(
            drip_id=row.get("drip_id"),
            organization_id=row.get("organization_id"),
            name=row.get("name"),
            description=row.get("description"),
            steps=[DripStep(**s) for s in _json(row.get("steps"), [])],
            is_active=row.get("is_active", True),
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_journey(self, row: Dict[str, Any]) -> CustomerJourney:
        """Convert database row to CustomerJourney model"""
        return CustomerJourney(
            journey_id=row.get("journey_id"),
            organization_id=row.get("organization_id"),
            campaign_id=row.get("campaign_id"),
            sequence_kind=SequenceKind(row.get("sequence_kind", "campaign")),
            customer_id=row.get("customer_id"),
            current_step=row.get("current_step", 0),
            status=JourneyStatus(row.get("status")),
            completed_steps=_json(row.get("completed_steps"), []),
            skipped_steps=_json(row.get("skipped_steps"), []),
            failed_step_id=row.get("failed_step_id"),
            data=_json(row.get("data"), {}),
            version=row.get("version", 0),
            started_at=row.get("started_at"),
            last_activity=row.get("last_activity"),
            paused_at=row.get("paused_at"),
            completed_at=row.get("completed_at"),
        )

    def _row_to_entry(self, row: Dict[str, Any]) -> ScheduledStep:
        """Convert database row to ScheduledStep model"""
        return ScheduledStep(
            entry_id=row.get("entry_id"),
            kind=ScheduleEntryKind(row.get("kind", "step")),
            campaign_id=row.get("campaign_id"),
            journey_id=row.get("journey_id"),
            sequence_kind=SequenceKind(row.get("sequence_kind", "campaign")),
            step_index=row.get("step_index"),
            step_id=row.get("step_id"),
            fire_at=row.get("fire_at"),
            status=ScheduleEntryStatus(row.get("status")),
            attempts=row.get("attempts", 0),
            last_error=row.get("last_error"),
            locked_until=row.get("locked_until"),
            idempotency_key=row.get("idempotency_key"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_ab_test(self, row: Dict[str, Any]) -> ABTest:
        """Convert database row to ABTest model"""
        return ABTest(
            test_id=row.get("test_id"),
            organization_id=row.get("organization_id"),
            campaign_id=row.get("campaign_id"),
            step_id=row.get("step_id"),
            variant_a=VariantContent(**_json(row.get("variant_a"), {})),
            variant_b=VariantContent(**_json(row.get("variant_b"), {})),
            split_ratio=row.get("split_ratio", 0.5),
            status=ABTestStatus(row.get("status")),
            stats_a=VariantStats(
                delivered=row.get("a_delivered", 0),
                opened=row.get("a_opened", 0),
                clicked=row.get("a_clicked", 0),
                converted=row.get("a_converted", 0),
            ),
            stats_b=VariantStats(
                delivered=row.get("b_delivered", 0),
                opened=row.get("b_opened", 0),
                clicked=row.get("b_clicked", 0),
                converted=row.get("b_converted", 0),
            ),
            winner=Variant(row["winner"]) if row.get("winner") else None,
            confidence=row.get("confidence"),
            p_value=row.get("p_value"),
            created_at=row.get("created_at"),
            completed_at=row.get("completed_at"),
        )
