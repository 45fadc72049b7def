"""
Adjustment saga: the only place that sequences resolver, ledger, aggregator
and writer for a tally card.

Steps run strictly in order, each depending on the id produced by the one
before it:

    RESOLVE   -> current version v0 (metadata version written when the key is
                 new or reason/note changed)
    STAGE     -> location rows replaced under v0; rows left under any other
                 version of the card are taken over
    AGGREGATE -> qty/location computed from the rows persisted under v0
    COMMIT    -> aggregate version v1 written (always a new id)
    RECONCILE -> rows moved to whichever id is current, re-committing the
                 aggregate if that id does not carry it; bounded loop
    DONE      -> returned id verified: it owns every row of the card and
                 its qty/location/multi_location match those rows

The run holds a per-key lock inside one transaction, so a failure at any
step rolls every step back and surfaces as that step's error.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction

from apps.tally import hooks
from apps.tally.aggregation import (
    Aggregate,
    aggregate,
    fingerprint_locations,
    is_multi_location,
    location_summary,
    normalize_locations,
    total_qty,
)
from apps.tally.constants import DEFAULT_MAX_RECONCILE_ATTEMPTS
from apps.tally.errors import (
    AggregateWriteError,
    LedgerReplaceError,
    MigrationError,
    ResolveError,
    TallyError,
)
from apps.tally.ledger import locations_for, replace_locations
from apps.tally.models import TallyCardEntryLocation
from apps.tally.resolver import get_version, lock_business_key, rederive_current, resolve_current
from apps.tally.writer import EntryWriter, clean_reason_code, clean_tally_card_number

logger = logging.getLogger(__name__)


class SagaStep(enum.Enum):
    RESOLVE = "resolve"
    STAGE = "stage"
    AGGREGATE = "aggregate"
    COMMIT = "commit"
    RECONCILE = "reconcile"
    DONE = "done"


STEP_ERRORS: dict[SagaStep, type[TallyError]] = {
    SagaStep.RESOLVE: ResolveError,
    SagaStep.STAGE: LedgerReplaceError,
    SagaStep.AGGREGATE: AggregateWriteError,
    SagaStep.COMMIT: AggregateWriteError,
    SagaStep.RECONCILE: MigrationError,
    SagaStep.DONE: MigrationError,
}


@dataclass(frozen=True)
class SagaResult:
    tally_card_number: str
    version_id: UUID
    initial_version_id: UUID
    prior_version_id: UUID | None
    qty: int
    location: str | None
    multi_location: bool
    locations: list[dict]
    fingerprint: str
    versions_written: int
    reconcile_attempts: int

    def as_dict(self) -> dict:
        return {
            "tally_card_number": self.tally_card_number,
            "id": str(self.version_id),
            "initial_id": str(self.initial_version_id),
            "prior_id": str(self.prior_version_id) if self.prior_version_id else None,
            "qty": self.qty,
            "location": self.location,
            "multi_location": self.multi_location,
            "locations": self.locations,
            "fingerprint": self.fingerprint,
            "versions_written": self.versions_written,
            "reconcile_attempts": self.reconcile_attempts,
        }


@dataclass
class _SagaState:
    company_id: UUID
    tally_card_number: str
    reason_code: str
    note: str | None
    desired: list
    actor_id: UUID | None
    version_hint: Any = None

    step: SagaStep = SagaStep.RESOLVE
    prior_id: UUID | None = None
    v0: UUID | None = None
    holder: UUID | None = None
    committed: UUID | None = None
    staged_aggregate: Aggregate | None = None
    versions_written: int = 0
    reconcile_attempts: int = 0

    @property
    def target(self):
        return self.committed or self.holder or self.v0


class AdjustmentSaga:
    def __init__(self, *, writer: EntryWriter | None = None, max_reconcile_attempts: int | None = None):
        self.writer = writer or EntryWriter()
        if max_reconcile_attempts is None:
            max_reconcile_attempts = getattr(
                settings, "TALLY_MAX_RECONCILE_ATTEMPTS", DEFAULT_MAX_RECONCILE_ATTEMPTS
            )
        if max_reconcile_attempts < 1:
            raise ValueError("max_reconcile_attempts must be >= 1")
        self.max_reconcile_attempts = max_reconcile_attempts

    def run(
        self,
        company_id: UUID,
        tally_card_number: str,
        *,
        rows: Iterable[Any],
        reason_code=None,
        note: str | None = None,
        actor_id: UUID | None = None,
        version_hint=None,
    ) -> SagaResult:
        # Validation before any write: no partial state on bad input.
        tally_card_number = clean_tally_card_number(tally_card_number)
        state = _SagaState(
            company_id=company_id,
            tally_card_number=tally_card_number,
            reason_code=clean_reason_code(reason_code),
            note=note,
            desired=normalize_locations(rows),
            actor_id=actor_id,
            version_hint=version_hint,
        )

        try:
            with transaction.atomic():
                lock_business_key(company_id, tally_card_number)
                self._run_step(state, SagaStep.RESOLVE, self._resolve)
                self._run_step(state, SagaStep.STAGE, self._stage)
                self._run_step(state, SagaStep.AGGREGATE, self._aggregate)
                self._run_step(state, SagaStep.COMMIT, self._commit)
                self._run_step(state, SagaStep.RECONCILE, self._reconcile)
                result = self._run_step(state, SagaStep.DONE, self._verify)
                hooks.on_adjustment_applied(company_id=company_id, result=result, actor_id=actor_id)
        except TallyError as exc:
            logger.warning(
                "tally adjustment for %s failed at %s: %s", tally_card_number, exc.step, exc
            )
            hooks.on_adjustment_failed(
                company_id=company_id,
                tally_card_number=tally_card_number,
                step=exc.step,
                error=exc,
                actor_id=actor_id,
            )
            raise

        logger.info(
            "tally adjustment for %s committed as %s (qty=%s, versions=%s, reconcile=%s)",
            tally_card_number,
            result.version_id,
            result.qty,
            result.versions_written,
            result.reconcile_attempts,
        )
        return result

    def _run_step(self, state: _SagaState, step: SagaStep, fn):
        state.step = step
        logger.debug("tally saga %s: %s (target=%s)", state.tally_card_number, step.value, state.target)
        try:
            return fn(state)
        except (TallyError, ValidationError):
            raise
        except Exception as exc:
            error_cls = STEP_ERRORS[step]
            raise error_cls(f"{step.value} step failed: {exc}", version_id=state.target) from exc

    # ---- steps ---------------------------------------------------------

    def _resolve(self, state: _SagaState) -> None:
        if state.version_hint:
            hinted = get_version(state.version_hint)
            if (hinted.company_id, hinted.tally_card_number) != (state.company_id, state.tally_card_number):
                raise ResolveError(
                    "version_id does not belong to this tally card", version_id=state.version_hint
                )
            # A stale hint is re-resolved, never trusted.
            rederive_current(state.version_hint)

        state.prior_id = resolve_current(state.company_id, state.tally_card_number)
        if state.prior_id:
            prior = get_version(state.prior_id)
            if (prior.reason_code, prior.note) == (state.reason_code, state.note):
                state.v0 = prior.id
                return

        state.v0 = self.writer.write_metadata(
            state.company_id,
            state.tally_card_number,
            state.reason_code,
            state.note,
            actor_id=state.actor_id,
        )
        state.versions_written += 1

    def _stage(self, state: _SagaState) -> None:
        previous = state.prior_id if state.prior_id and state.prior_id != state.v0 else None
        replace_locations(
            state.v0, state.desired, previous_version_id=previous, adopt_orphans=True, actor_id=state.actor_id
        )
        state.holder = state.v0

    def _aggregate(self, state: _SagaState) -> None:
        state.staged_aggregate = aggregate(locations_for(state.v0))
        if state.staged_aggregate.qty is None:
            raise AggregateWriteError("no location rows persisted under staged version", version_id=state.v0)

    def _commit(self, state: _SagaState) -> None:
        agg = state.staged_aggregate
        state.committed = self.writer.write_aggregate(
            state.v0, agg.qty, agg.location, actor_id=state.actor_id
        )
        state.versions_written += 1

    def _reconcile(self, state: _SagaState) -> None:
        """
        Move the rows to the current id until the current id both owns the
        rows and carries their aggregate. Bounded by max_reconcile_attempts.
        """
        while True:
            current = resolve_current(state.company_id, state.tally_card_number)
            if current == state.holder and _carries_aggregate(current):
                return

            if state.reconcile_attempts >= self.max_reconcile_attempts:
                raise MigrationError(
                    f"current version kept moving after {state.reconcile_attempts} reconcile attempts",
                    version_id=current,
                )
            state.reconcile_attempts += 1

            if current != state.holder:
                replace_locations(
                    current, state.desired, previous_version_id=state.holder, actor_id=state.actor_id
                )
                state.holder = current

            if not _carries_aggregate(current):
                agg = aggregate(locations_for(current))
                state.committed = self.writer.write_aggregate(
                    current, agg.qty, agg.location, actor_id=state.actor_id
                )
                state.versions_written += 1

    def _verify(self, state: _SagaState) -> SagaResult:
        final_id = state.holder
        entry = get_version(final_id)
        rows = locations_for(final_id)

        if not _carries_aggregate(final_id, entry=entry, rows=rows):
            raise MigrationError("final version does not carry its location aggregate", version_id=final_id)

        leftovers = (
            TallyCardEntryLocation.objects.filter(
                entry__company_id=state.company_id,
                entry__tally_card_number=state.tally_card_number,
            )
            .exclude(entry_id=final_id)
            .count()
        )
        if leftovers:
            raise MigrationError(
                f"{leftovers} location rows left under superseded versions", version_id=final_id
            )

        return SagaResult(
            tally_card_number=state.tally_card_number,
            version_id=final_id,
            initial_version_id=state.v0,
            prior_version_id=state.prior_id,
            qty=entry.qty,
            location=entry.location,
            multi_location=entry.multi_location,
            locations=[{"location": r.location, "qty": r.qty, "pos": r.pos} for r in rows],
            fingerprint=fingerprint_locations(rows),
            versions_written=state.versions_written,
            reconcile_attempts=state.reconcile_attempts,
        )


def _carries_aggregate(version_id, *, entry=None, rows=None) -> bool:
    """True when the stored aggregate of a version equals that of its rows."""
    entry = entry or get_version(version_id)
    rows = rows if rows is not None else locations_for(version_id)
    if not rows:
        return False
    return (
        entry.qty == total_qty(rows)
        and entry.location == location_summary(rows)
        and entry.multi_location == is_multi_location(rows)
    )


def apply_adjustment(
    company_id: UUID,
    tally_card_number: str,
    *,
    rows: Iterable[Any],
    reason_code=None,
    note: str | None = None,
    actor_id: UUID | None = None,
    version_hint=None,
) -> SagaResult:
    return AdjustmentSaga().run(
        company_id,
        tally_card_number,
        rows=rows,
        reason_code=reason_code,
        note=note,
        actor_id=actor_id,
        version_hint=version_hint,
    )
