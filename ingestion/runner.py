# ============================================================================
# File: ingestion/runner.py
# Description: Import orchestrator with per-record failure isolation
# ============================================================================
"""
Import Runner - Orchestrates Fetch, Reconcile, Prune for one source.

This module provides import orchestration with:
- An ImportRun audit row created before anything else, so total failures
  are visible
- Bounded fetch time (FETCH_TIMEOUT_SECONDS)
- Partial failure support (one bad record never aborts the batch)
- Run abort when store writes keep failing
- Capped error summary on the audit row
"""

from typing import List, Optional
import asyncio
import logging

from core.clock import Clock, utc_now
from core.config import Settings, settings as default_settings
from core.exceptions import (
    DatabaseError,
    ETLException,
    ExtractionError,
    NetworkError,
)
from ingestion.base import SourceAdapter
from ingestion.loaders.entity_resolver import EntityResolver
from ingestion.loaders.store import Entity, Store
from ingestion.loaders.upserters import UpsertAction, build_upserter
from models.base import EntityKind, ImportStatus
from schemas.runs import ImportResult

logger = logging.getLogger(__name__)


class ImportRunner:
    """
    Import Orchestrator

    Responsibilities:
    - Start: create the ImportRun in `running`
    - Fetch: call the source adapter; on failure mark the run `failed` and
      re-raise so the queue's retry policy applies
    - Reconcile: one record at a time, in fetch order
    - Prune: age-based deletion for snapshot sources
    - Finish: final counts, status and error summary
    """

    def __init__(
        self,
        store: Store,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.settings = settings
        self.clock = clock
        self.resolver = EntityResolver(store, settings.STATE_CODE)

    def _truncate(self, message: str) -> str:
        limit = self.settings.ERROR_MESSAGE_MAX_LENGTH
        return message if len(message) <= limit else message[: limit - 3] + "..."

    def _summary(self, errors: List[str]) -> Optional[str]:
        if not errors:
            return None
        return "\n".join(errors[: self.settings.ERROR_SUMMARY_LIMIT])

    async def run(self, adapter: SourceAdapter, trigger: str = "manual") -> ImportResult:
        """
        Run one import for the adapter's source kind.

        Args:
            adapter: Source adapter to fetch from
            trigger: "manual" or "scheduled", recorded on the audit row

        Returns:
            ImportResult mirroring the terminal ImportRun row

        Raises:
            ExtractionError: Fetch failed or timed out (run marked failed)
            DatabaseError: Store writes kept failing (run marked failed)
            asyncio.CancelledError: Run cancelled mid-import (run marked failed)
        """
        kind = adapter.source_kind
        started_at = self.clock()

        run = await self.store.create(EntityKind.IMPORT_RUN, {
            "source": kind,
            "source_name": adapter.source_name,
            "status": ImportStatus.RUNNING,
            "started_at": started_at,
            "items_found": 0,
            "items_upserted": 0,
            "items_skipped": 0,
            "items_failed": 0,
            "items_pruned": 0,
            "run_metadata": {"trigger": trigger},
        })
        logger.info(f"Import run {run['id']} started for {kind.value} ({adapter.source_name})")

        try:
            return await self._import(adapter, run, started_at, trigger)
        except asyncio.CancelledError:
            # Queue shutdown mid-run; never leave the audit row `running`
            await self._fail(
                run, started_at,
                ETLException("Import cancelled", context={"source_name": adapter.source_name}),
                trigger,
            )
            raise

    async def _import(self, adapter: SourceAdapter, run: Entity, started_at, trigger: str) -> ImportResult:
        kind = adapter.source_kind

        # --------------------------------------------------
        # PHASE 1: FETCH
        # --------------------------------------------------
        try:
            records = await asyncio.wait_for(
                adapter.fetch(), timeout=self.settings.FETCH_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError as e:
            error = NetworkError(
                f"Fetch timed out after {self.settings.FETCH_TIMEOUT_SECONDS} seconds",
                context={"source_name": adapter.source_name},
                original_exception=e
            )
            await self._fail(run, started_at, error, trigger)
            raise error
        except ETLException as e:
            await self._fail(run, started_at, e, trigger)
            raise
        except Exception as e:
            error = ExtractionError(
                "Unexpected error during fetch",
                context={"source_name": adapter.source_name},
                original_exception=e
            )
            await self._fail(run, started_at, error, trigger)
            raise error

        logger.info(f"Fetched {len(records)} {kind.value} records")

        # --------------------------------------------------
        # PHASE 2: RECONCILE
        # --------------------------------------------------
        upserter = build_upserter(kind, self.store, self.settings, self.clock, self.resolver)
        found = len(records)
        inserted = updated = skipped = failed = 0
        errors: List[str] = []
        consecutive_store_failures = 0

        try:
            await upserter.prepare()
        except DatabaseError as e:
            await self._fail(run, started_at, e, trigger, found=found)
            raise

        for record in records:
            try:
                action = await upserter.upsert(record)

            except DatabaseError as e:
                failed += 1
                consecutive_store_failures += 1
                errors.append(self._truncate(f"{upserter.describe(record)}: {e}"))
                logger.error(
                    f"Store failure reconciling {upserter.describe(record)}: {e}",
                    extra={"error_context": e.to_dict()}
                )

                if consecutive_store_failures >= self.settings.MAX_CONSECUTIVE_STORE_FAILURES:
                    logger.error(
                        f"Aborting {kind.value} import after "
                        f"{consecutive_store_failures} consecutive store failures"
                    )
                    await self._fail(
                        run, started_at, e, trigger,
                        found=found, upserted=inserted + updated, skipped=skipped,
                        failed=failed, errors=errors,
                    )
                    raise
                continue

            except Exception as e:
                failed += 1
                consecutive_store_failures = 0
                errors.append(self._truncate(f"{upserter.describe(record)}: {e}"))
                context = e.to_dict() if isinstance(e, ETLException) else {"error_type": type(e).__name__}
                logger.warning(
                    f"Record failed for {kind.value} ({upserter.describe(record)}): {e}",
                    extra={"error_context": context}
                )
                continue

            consecutive_store_failures = 0
            if action == UpsertAction.INSERTED:
                inserted += 1
            elif action == UpsertAction.UPDATED:
                updated += 1
            else:
                skipped += 1

        # --------------------------------------------------
        # PHASE 3: PRUNE
        # --------------------------------------------------
        pruned = 0
        try:
            pruned = await upserter.prune()
            if pruned:
                logger.info(f"Pruned {pruned} {kind.value} records past retention")
        except DatabaseError as e:
            errors.append(self._truncate(f"prune: {e}"))
            logger.error(f"Prune failed for {kind.value}: {e}", extra={"error_context": e.to_dict()})

        # --------------------------------------------------
        # PHASE 4: FINISH
        # --------------------------------------------------
        upserted = inserted + updated
        if not errors:
            status = ImportStatus.COMPLETED
        elif found > 0 and failed == found:
            status = ImportStatus.FAILED
        else:
            status = ImportStatus.PARTIAL

        finished_at = self.clock()
        duration = (finished_at - started_at).total_seconds()
        await self.store.update(EntityKind.IMPORT_RUN, run["id"], {
            "status": status,
            "finished_at": finished_at,
            "duration_seconds": duration,
            "items_found": found,
            "items_upserted": upserted,
            "items_skipped": skipped,
            "items_failed": failed,
            "items_pruned": pruned,
            "error_summary": self._summary(errors),
            "run_metadata": {
                "trigger": trigger,
                "inserted": inserted,
                "updated": updated,
                "error_count": len(errors),
            },
        })

        logger.info(
            f"Import run {run['id']} {status.value} for {kind.value} - "
            f"Found: {found}, Upserted: {upserted} (new {inserted}, updated {updated}), "
            f"Skipped: {skipped}, Failed: {failed}, Pruned: {pruned}"
        )

        return ImportResult(
            run_id=run["id"],
            source=kind,
            status=status,
            items_found=found,
            items_upserted=upserted,
            items_skipped=skipped,
            items_failed=failed,
            items_pruned=pruned,
            inserted=inserted,
            updated=updated,
            errors=errors,
            duration_seconds=duration,
        )

    async def _fail(
        self,
        run: Entity,
        started_at,
        error: Exception,
        trigger: str,
        found: int = 0,
        upserted: int = 0,
        skipped: int = 0,
        failed: int = 0,
        errors: Optional[List[str]] = None,
    ):
        """Move the run to `failed`; a store outage here is logged, not raised"""
        message = self._truncate(str(error))
        # Record-level failures already name the error that ended the run
        all_errors = list(errors or [])
        if not all_errors:
            all_errors.append(message)

        finished_at = self.clock()
        context = error.to_dict() if isinstance(error, ETLException) else {}
        logger.error(f"Import run {run['id']} failed: {message}", extra={"error_context": context})

        try:
            await self.store.update(EntityKind.IMPORT_RUN, run["id"], {
                "status": ImportStatus.FAILED,
                "finished_at": finished_at,
                "duration_seconds": (finished_at - started_at).total_seconds(),
                "items_found": found,
                "items_upserted": upserted,
                "items_skipped": skipped,
                "items_failed": failed,
                "error_summary": self._summary(all_errors),
                "run_metadata": {"trigger": trigger, "error_count": len(all_errors)},
            })
        except DatabaseError as db_error:
            logger.error(
                f"Could not mark import run {run['id']} failed: {db_error}",
                extra={"error_context": db_error.to_dict()}
            )
