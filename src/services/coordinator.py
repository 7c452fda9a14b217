"""Optimistic mutations of the pending treatment set.

Each mutation moves through ``idle -> applying -> committing`` and ends in
``idle`` directly on success or via ``reverting`` on failure. The visible
state is patched before any I/O; a failed commit discards the patch and
recomputes from the untouched backing data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from src.core.clock import Clock, elapsed_seconds, to_local
from src.core.logging import get_logger
from src.models.dashboard import DashboardState, PendingFluid
from src.models.errors import (
    CareEngineError,
    CommitFailedError,
    DataFormatError,
    MutationInProgressError,
    PreconditionError,
    QueueFullError,
    SessionValidationError,
    StoreError,
    TreatmentNotPendingError,
)
from src.models.operations import EnqueueResult, OperationType, QueuedOperation
from src.models.schedules import FluidLocation, Schedule
from src.models.sessions import FluidSession, LoggedSession, MedicationSession
from src.services.connectivity import ConnectionState, ConnectivityMonitor
from src.services.dashboard import DashboardService, StateMask
from src.services.derivation import DEFAULT_WINDOW
from src.services.offline_queue import OfflineQueue
from src.services.side_effects import AnalyticsTracker, NotificationScheduler, SideEffectRunner
from src.services.store_client import SessionStore
from src.services.summary_cache import DailyCacheService

log = get_logger(__name__)


class MutationPhase(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    COMMITTING = "committing"
    REVERTING = "reverting"


class CommitOutcome(str, Enum):
    COMMITTED = "committed"
    QUEUED = "queued"


@dataclass
class MutationResult:
    action: str
    outcome: CommitOutcome
    state: DashboardState
    sessions: list[LoggedSession] = field(default_factory=list)
    queue: EnqueueResult | None = None

    @property
    def queue_warning(self) -> bool:
        return self.queue is not None and self.queue.warning


def _edit_mask(old: LoggedSession, new: LoggedSession, window: timedelta) -> StateMask:
    """Provisionally remove whatever the edited session now answers."""
    span = window.total_seconds()

    def mask(state: DashboardState) -> DashboardState:
        if isinstance(new, MedicationSession):
            kept = []
            for item in state.pending_medications:
                if item.medication_name != new.medication_name:
                    kept.append(item)
                elif item.is_flexible:
                    continue
                elif new.completed and abs(elapsed_seconds(item.scheduled_time, new.match_time)) <= span:
                    continue
                else:
                    kept.append(item)
            return state.model_copy(update={"pending_medications": tuple(kept)})

        pending = state.pending_fluid
        if pending is None or not isinstance(old, FluidSession):
            return state
        remaining = pending.remaining_volume - (new.volume_given - old.volume_given)
        if remaining <= 0:
            return state.without_fluid()
        return state.model_copy(update={"pending_fluid": pending.model_copy(update={"remaining_volume": remaining})})

    return mask


class OptimisticMutationCoordinator:
    def __init__(
        self,
        *,
        user_id: str,
        pet_id: str,
        dashboard: DashboardService,
        cache: DailyCacheService,
        queue: OfflineQueue,
        sessions: SessionStore,
        connectivity: ConnectivityMonitor,
        notifications: NotificationScheduler,
        analytics: AnalyticsTracker,
        side_effects: SideEffectRunner,
        clock: Clock,
        window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        self.user_id = user_id
        self.pet_id = pet_id
        self._dashboard = dashboard
        self._cache = cache
        self._queue = queue
        self._sessions = sessions
        self._connectivity = connectivity
        self._notifications = notifications
        self._analytics = analytics
        self._side_effects = side_effects
        self._clock = clock
        self._window = window
        self._phase = MutationPhase.IDLE

    @property
    def phase(self) -> MutationPhase:
        return self._phase

    def _check_preconditions(self) -> None:
        if not self.user_id:
            raise PreconditionError("No signed-in user for this mutation.")
        if not self.pet_id:
            raise PreconditionError("No pet selected for this mutation.")
        if self._phase is not MutationPhase.IDLE:
            raise MutationInProgressError(f"Another mutation is {self._phase.value}.")

    async def execute(self, operation: QueuedOperation) -> None:
        """Apply one operation to the session store, keyed for idempotent replay."""
        if operation.type is OperationType.CREATE_SESSION:
            if operation.session is None:
                raise DataFormatError(f"Queued operation {operation.id} carries no session.")
            await self._sessions.create_session(operation.session, idempotency_key=operation.id)
        else:
            if operation.old_session is None or operation.new_session is None:
                raise DataFormatError(f"Queued operation {operation.id} is missing the old or new session.")
            await self._sessions.update_session(
                operation.old_session, operation.new_session, idempotency_key=operation.id
            )

    async def _commit(self, operation: QueuedOperation) -> tuple[CommitOutcome, EnqueueResult | None]:
        if self._connectivity.state is ConnectionState.OFFLINE:
            return CommitOutcome.QUEUED, await self._queue.enqueue(operation)
        backlog = await self._queue.size()
        if backlog:
            log.info("commit_queued_behind_backlog", operation_id=operation.id, backlog=backlog)
            return CommitOutcome.QUEUED, await self._queue.enqueue(operation)

        try:
            await self.execute(operation)
        except StoreError as exc:
            if not exc.transient:
                raise
            log.info("commit_deferred_to_queue", operation_id=operation.id, error=exc.error)
            return CommitOutcome.QUEUED, await self._queue.enqueue(operation)
        return CommitOutcome.COMMITTED, None

    async def _mutate(
        self,
        *,
        action: str,
        operation: QueuedOperation,
        mask: StateMask,
        touched: list[LoggedSession],
    ) -> MutationResult:
        self._phase = MutationPhase.APPLYING
        mask_id = operation.id
        try:
            self._dashboard.apply_optimistic(mask_id, mask)
            self._phase = MutationPhase.COMMITTING
            try:
                outcome, enqueued = await self._commit(operation)
            except CareEngineError as exc:
                self._phase = MutationPhase.REVERTING
                self._dashboard.release_optimistic(mask_id)
                await self._dashboard.recompute()
                log.warning(
                    "mutation_reverted",
                    action=action,
                    pet_id=self.pet_id,
                    operation_id=operation.id,
                    error=exc.error,
                    message=exc.message,
                )
                if isinstance(exc, QueueFullError):
                    raise
                raise CommitFailedError(
                    f"{action} was not saved: {exc.message}",
                    extra={"cause": exc.error},
                ) from exc

            self._dashboard.release_optimistic(mask_id)
            resulting = operation.resulting_session
            try:
                if outcome is CommitOutcome.QUEUED:
                    if resulting is not None:
                        await self._cache.apply_local(resulting)
                else:
                    await self._cache.invalidate_for_session(*touched)
            except CareEngineError as exc:
                log.warning(
                    "summary_reconcile_failed",
                    action=action,
                    pet_id=self.pet_id,
                    operation_id=operation.id,
                    error=exc.error,
                    message=exc.message,
                )
                await self._dashboard.recompute()
        finally:
            self._dashboard.release_optimistic(mask_id)
            self._phase = MutationPhase.IDLE

        log.info(
            "mutation_committed",
            action=action,
            pet_id=self.pet_id,
            operation_id=operation.id,
            outcome=outcome.value,
        )
        return MutationResult(
            action=action,
            outcome=outcome,
            state=self._dashboard.state,
            sessions=[s for s in (resulting,) if s is not None],
            queue=enqueued,
        )

    def _fire_analytics(self, action: str, outcome: CommitOutcome, session: LoggedSession) -> None:
        event: dict[str, Any] = {
            "action": action,
            "user_id": self.user_id,
            "pet_id": self.pet_id,
            "outcome": outcome.value,
            "session_count": 1,
        }
        if isinstance(session, MedicationSession):
            event["treatment_type"] = "medication"
            event["medication_name"] = session.medication_name
        else:
            event["treatment_type"] = "fluid"
            event["volume"] = session.volume_given
        self._side_effects.fire(f"analytics:{action}", lambda: self._analytics.track(event))

    def _fire_cancel(self, schedule_id: str, scheduled_time: datetime | None = None) -> None:
        self._side_effects.fire(
            f"notifications:cancel:{schedule_id}",
            lambda: self._notifications.cancel_for(schedule_id, scheduled_time),
        )

    def _fire_reschedule(self, schedule: Schedule) -> None:
        self._side_effects.fire(
            f"notifications:schedule:{schedule.id}", lambda: self._notifications.schedule_for(schedule)
        )

    async def _medication_action(self, action: str, schedule_id: str, scheduled_time: datetime, *, skipped: bool) -> MutationResult:
        self._check_preconditions()
        scheduled_time = to_local(scheduled_time, self._clock.tz)
        pending = self._dashboard.state.find_medication(schedule_id, scheduled_time)
        if pending is None:
            raise TreatmentNotPendingError(f"No pending dose for schedule {schedule_id} at {scheduled_time.isoformat()}")

        now = self._clock.now()
        session = MedicationSession.from_schedule(
            pending.schedule,
            pet_id=self.pet_id,
            user_id=self.user_id,
            date_time=now,
            scheduled_time=None if pending.is_flexible else pending.scheduled_time,
            skipped=skipped,
        )
        operation = QueuedOperation(
            type=OperationType.CREATE_SESSION,
            user_id=self.user_id,
            pet_id=self.pet_id,
            target_ids=[schedule_id],
            session=session,
            created_at=now,
        )
        key = pending.key
        result = await self._mutate(
            action=action,
            operation=operation,
            mask=lambda state: state.without_medication(key),
            touched=[session],
        )
        self._fire_cancel(schedule_id, None if pending.is_flexible else pending.scheduled_time)
        self._fire_analytics(action, result.outcome, session)
        return result

    async def confirm_medication(self, schedule_id: str, scheduled_time: datetime) -> MutationResult:
        """Log the scheduled dose as given, using the schedule's target values."""
        return await self._medication_action("confirm_medication", schedule_id, scheduled_time, skipped=False)

    async def skip_medication(self, schedule_id: str, scheduled_time: datetime) -> MutationResult:
        """Log an explicit skip: zero dosage, not completed."""
        return await self._medication_action("skip_medication", schedule_id, scheduled_time, skipped=True)

    async def confirm_fluid(self) -> MutationResult:
        """Log one fluid session covering everything still owed today."""
        self._check_preconditions()
        pending: PendingFluid | None = self._dashboard.state.pending_fluid
        if pending is None:
            raise TreatmentNotPendingError("No fluid therapy pending today.")

        now = self._clock.now()
        session = FluidSession(
            pet_id=self.pet_id,
            user_id=self.user_id,
            date_time=now,
            schedule_id=pending.schedule.id,
            volume_given=pending.remaining_volume,
            injection_site=FluidLocation.SHOULDER_BLADE_MIDDLE,
            created_at=now,
        )
        operation = QueuedOperation(
            type=OperationType.CREATE_SESSION,
            user_id=self.user_id,
            pet_id=self.pet_id,
            target_ids=[pending.schedule.id],
            session=session,
            created_at=now,
        )
        result = await self._mutate(
            action="confirm_fluid",
            operation=operation,
            mask=lambda state: state.without_fluid(),
            touched=[session],
        )
        self._fire_cancel(pending.schedule.id)
        self._fire_analytics("confirm_fluid", result.outcome, session)
        return result

    def _validate_edit(self, old: LoggedSession, new: LoggedSession, now: datetime) -> None:
        fields: list[dict[str, str]] = []
        if new.id != old.id:
            fields.append({"name": "id", "reason": "An edit must keep the session id"})
        if new.kind != old.kind:
            fields.append({"name": "kind", "reason": "An edit cannot change the treatment kind"})
        if new.pet_id != self.pet_id or old.pet_id != self.pet_id:
            fields.append({"name": "pet_id", "reason": "Session belongs to another pet"})
        if to_local(new.date_time, self._clock.tz) > now:
            fields.append({"name": "date_time", "reason": "Sessions cannot be logged in the future"})
        fields.extend(new.validation_errors())
        if fields:
            raise SessionValidationError("Edited session is invalid.", fields=fields)

    async def edit_session(self, old: LoggedSession, new: LoggedSession) -> MutationResult:
        """Replace ``old`` with ``new`` as one unit."""
        self._check_preconditions()
        now = self._clock.now()
        self._validate_edit(old, new, now)
        new = new.model_copy(update={"updated_at": now})

        operation = QueuedOperation(
            type=OperationType.UPDATE_SESSION,
            user_id=self.user_id,
            pet_id=self.pet_id,
            target_ids=[old.id],
            old_session=old,
            new_session=new,
            created_at=now,
        )
        result = await self._mutate(
            action="edit_session",
            operation=operation,
            mask=_edit_mask(old, new, self._window),
            touched=[old, new],
        )

        schedule_set = self._dashboard.schedule_set
        schedule = schedule_set.get(new.schedule_id) if schedule_set and new.schedule_id else None
        if schedule is not None:
            self._fire_reschedule(schedule)
        self._fire_analytics("edit_session", result.outcome, new)
        return result
