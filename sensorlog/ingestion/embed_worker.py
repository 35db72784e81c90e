"""
Embedding worker.

Row lifecycle:

    pending -> processing -> completed
                          -> failed

Only rows whose embedding column is still NULL are fetched, so invoking the
worker twice with the same ids is harmless. Each row is handled on its own:
a model or write failure marks that row failed and the loop moves on. The
outcome of every row is returned as a RowOutcome rather than inferred from
logs.

A timeout budget bounds one invocation. Once it is spent no new model call
is started; rows not yet reached stay pending for a later invocation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from sensorlog.shared.config import Config, get_config
from sensorlog.shared.errors import ModelCallError, RowUpdateError
from sensorlog.shared.observability import get_logger
from sensorlog.shared.observability.metrics import (
    embedding_duration_seconds,
    embeddings_total,
)
from sensorlog.shared.vector_utils import (
    VectorNormalizer,
    unit_normalize,
    vector_expected_dim,
)

from .sections import (
    EMBEDDING_COMPLETED,
    EMBEDDING_FAILED,
    EMBEDDING_PENDING,
    EMBEDDING_PROCESSING,
)

logger = get_logger(__name__)

OUTCOME_SKIPPED = "skipped"


@dataclass(frozen=True)
class RowOutcome:
    """Result for one row: completed, failed (with reason) or skipped."""

    row_id: Any
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == EMBEDDING_COMPLETED


@dataclass
class EmbedBatchResult:
    """Per-row outcomes of one worker invocation."""

    requested: int
    fetched: int = 0
    outcomes: List[RowOutcome] = field(default_factory=list)
    timed_out: bool = False

    def _with_status(self, status: str) -> List[RowOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def completed(self) -> List[RowOutcome]:
        return self._with_status(EMBEDDING_COMPLETED)

    @property
    def failed(self) -> List[RowOutcome]:
        return self._with_status(EMBEDDING_FAILED)

    @property
    def skipped(self) -> List[RowOutcome]:
        return self._with_status(OUTCOME_SKIPPED)

    def outcome_for(self, row_id: Any) -> Optional[RowOutcome]:
        for outcome in self.outcomes:
            if outcome.row_id == row_id:
                return outcome
        return None


class EmbeddingWorker:
    """
    Fills the embedding column of measurement rows.

    The worker only updates the embedding and status columns; it never
    creates or deletes rows.
    """

    def __init__(
        self,
        store,
        provider,
        config: Optional[Config] = None,
        clock=time.monotonic,
    ):
        """
        Args:
            store: MeasurementStore
            provider: EmbeddingProvider
            config: Config (defaults to the global config)
            clock: Monotonic clock, injectable for tests
        """
        config = config or get_config()
        self.store = store
        self.provider = provider
        self.mean_pool = config.embedding.mean_pool
        self.normalize = config.embedding.normalize
        self.dimension_guard = VectorNormalizer(config.embedding.dims)
        self.default_timeout = config.embed_trigger.timeout_seconds
        self._clock = clock

    def embed_batch(
        self,
        row_ids: Sequence[Any],
        table_ref: str,
        content_field: str,
        embedding_field: str,
        timeout_seconds: Optional[float] = None,
    ) -> EmbedBatchResult:
        """
        Embed the given rows.

        Args:
            row_ids: Ids delivered by the trigger
            table_ref: Table holding the rows
            content_field: Column with the text to embed
            embedding_field: Column receiving the vector
            timeout_seconds: Budget for model calls (config embed_trigger.timeout_ms)

        Returns:
            EmbedBatchResult with one outcome per fetched row
        """
        result = EmbedBatchResult(requested=len(row_ids))
        budget = self.default_timeout if timeout_seconds is None else timeout_seconds
        deadline = self._clock() + budget

        logger.info(
            "embedding_batch_started",
            table=table_ref,
            rows=len(row_ids),
            timeout_seconds=budget,
        )

        rows = self.store.fetch_unembedded(
            table_ref, row_ids, content_field, embedding_field
        )
        result.fetched = len(rows)
        if not rows:
            logger.info("embedding_batch_empty", table=table_ref)
            return result

        for row in rows:
            row_id = row["id"]
            if self._clock() >= deadline:
                result.timed_out = True
                result.outcomes.append(
                    RowOutcome(row_id, OUTCOME_SKIPPED, "timeout budget exhausted")
                )
                embeddings_total.labels(status=OUTCOME_SKIPPED).inc()
                continue

            outcome = self._embed_row(
                table_ref, row_id, row.get(content_field), embedding_field
            )
            result.outcomes.append(outcome)
            embeddings_total.labels(status=outcome.status).inc()

        logger.info(
            "embedding_batch_completed",
            table=table_ref,
            fetched=result.fetched,
            completed=len(result.completed),
            failed=len(result.failed),
            skipped=len(result.skipped),
            timed_out=result.timed_out,
        )
        return result

    def _embed_row(
        self, table: str, row_id: Any, content: Optional[str], embedding_field: str
    ) -> RowOutcome:
        if not content:
            logger.error(
                "embedding_content_missing", row_id=row_id, table=table
            )
            return self._fail(table, row_id, embedding_field, "no content to embed")

        try:
            if not self.store.mark_status(
                table, row_id, EMBEDDING_PROCESSING, embedding_field
            ):
                # Embedded by a concurrent invocation since the fetch
                return RowOutcome(row_id, OUTCOME_SKIPPED, "already embedded")

            started = time.monotonic()
            vector = self.provider.run(
                content, mean_pool=self.mean_pool, normalize=self.normalize
            )
            embedding_duration_seconds.observe(time.monotonic() - started)

            if vector_expected_dim(vector) != self.dimension_guard.target_dim:
                logger.warning(
                    "embedding_dimension_adjusted",
                    row_id=row_id,
                    got=vector_expected_dim(vector),
                    expected=self.dimension_guard.target_dim,
                )
                vector = self.dimension_guard.normalize(vector)
                # Padding or truncation changes the length; ranking needs unit vectors
                if self.normalize:
                    vector = unit_normalize(vector)

            self.store.write_embedding(
                table, row_id, embedding_field, vector, EMBEDDING_COMPLETED
            )
        except (ModelCallError, RowUpdateError, ValueError) as e:
            logger.error("embedding_row_failed", row_id=row_id, error=str(e))
            return self._fail(table, row_id, embedding_field, str(e))
        except Exception as e:
            logger.error(
                "embedding_row_failed",
                row_id=row_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._fail(table, row_id, embedding_field, f"{type(e).__name__}: {e}")

        logger.debug("embedding_row_completed", row_id=row_id)
        return RowOutcome(row_id, EMBEDDING_COMPLETED)

    def _fail(
        self, table: str, row_id: Any, embedding_field: str, reason: str
    ) -> RowOutcome:
        """Mark a row failed; if that is impossible, put it back to pending."""
        try:
            self.store.mark_status(table, row_id, EMBEDDING_FAILED, embedding_field)
        except RowUpdateError as e:
            logger.error("embedding_status_update_failed", row_id=row_id, error=str(e))
            try:
                self.store.mark_status(
                    table, row_id, EMBEDDING_PENDING, embedding_field
                )
            except RowUpdateError as revert_error:
                logger.error(
                    "embedding_status_revert_failed",
                    row_id=row_id,
                    error=str(revert_error),
                )
            return RowOutcome(row_id, EMBEDDING_FAILED, f"{reason}; status update failed: {e}")
        return RowOutcome(row_id, EMBEDDING_FAILED, reason)
