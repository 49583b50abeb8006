"""
Event ingestion - the entry point the HTTP layer calls for each verified webhook.

Flow: normalize -> persist (direct) or buffer (batched) -> log the delivery attempt.

Direct mode is synchronously durable: storage errors propagate so the caller
can ask the provider to redeliver. Batched mode acknowledges before the write
commits (at-least-once-eventually); flush failures are re-queued by the
accumulator and are visible only in logs. Once the accumulator is stopped,
events are written directly so nothing is acknowledged into a dead buffer.
"""
import logging
import uuid
from typing import Any, Mapping, Optional

from eventsink.config import Settings, get_settings
from eventsink.schemas.event_records import (
    DeliveryStatus,
    EventRecord,
    IngestResult,
    WebhookSource,
)
from eventsink.services.delivery_tracker import DeliveryTracker
from eventsink.services.normalization import normalize
from eventsink.services.persistence import PersistenceGateway
from eventsink.utils.errors import MalformedPayloadError
from eventsink.utils.metrics import Timer
from eventsink.workers.batch_accumulator import BatchAccumulator

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_ACCEPTED = "accepted"


class IngestionService:
    def __init__(
        self,
        gateway: PersistenceGateway,
        tracker: Optional[DeliveryTracker] = None,
        accumulator: Optional[BatchAccumulator] = None,
    ):
        self.gateway = gateway
        self.tracker = tracker or DeliveryTracker(gateway)
        self.accumulator = accumulator

    @property
    def batching_enabled(self) -> bool:
        return self.accumulator is not None

    async def ingest(
        self,
        source: WebhookSource | str,
        payload: Any,
        headers: Optional[Mapping[str, Any]] = None,
        signature: Optional[str] = None,
        delivery_id: Optional[str] = None,
    ) -> IngestResult:
        """
        Process one inbound webhook. Exactly one delivery-log row is written
        per call, whatever the outcome.

        Raises:
            MalformedPayloadError: payload lacks the source's required shape.
            PersistenceError: direct mode only, the canonical insert failed.
        """
        source = WebhookSource(source)
        headers = dict(headers or {})

        try:
            record = normalize(source, payload, headers, signature, delivery_id)
        except MalformedPayloadError as e:
            logger.warning(
                "Rejected malformed %s payload: %s", source.value, e.reason,
                extra={"source": source.value, "delivery_id": delivery_id},
            )
            await self._log_rejected(source, delivery_id, e, headers, payload)
            raise
        except Exception as e:
            logger.error(
                "%s normalization error: %s", source.value, str(e),
                exc_info=True,
                extra={"source": source.value, "delivery_id": delivery_id},
            )
            await self._log_rejected(source, delivery_id, e, headers, payload)
            raise

        if self.accumulator is not None and not self.accumulator.closed:
            self.accumulator.add(source, record)
            status = STATUS_ACCEPTED
        else:
            await self._persist(source, record)
            status = STATUS_PROCESSED

        await self.tracker.log_attempt(
            delivery_id=record.event_id,
            source=source,
            event_type=record.event_type,
            outcome=DeliveryStatus.DELIVERED,
            request_headers=headers,
            request_body=payload,
        )
        return IngestResult(event_id=record.event_id, status=status)

    async def _log_rejected(
        self,
        source: WebhookSource,
        delivery_id: Optional[str],
        error: Exception,
        headers: dict,
        payload: Any,
    ) -> None:
        """Failed delivery row for a payload that never became a record."""
        await self.tracker.log_attempt(
            delivery_id=delivery_id or str(uuid.uuid4()),
            source=source,
            event_type=None,
            outcome=DeliveryStatus.FAILED,
            error_message=str(error),
            error_code=type(error).__name__,
            request_headers=headers,
            request_body=payload,
        )

    async def _persist(self, source: WebhookSource, record: EventRecord) -> None:
        timer = Timer().start()
        record.mark_processed()
        try:
            await self.gateway.insert_event(source, record)
        except Exception as e:
            logger.error(
                "%s event processing error: %s", source.value, str(e),
                extra={"source": source.value, "event_id": record.event_id, "event_type": record.event_type},
            )
            await self.tracker.log_attempt(
                delivery_id=record.event_id,
                source=source,
                event_type=record.event_type,
                outcome=DeliveryStatus.FAILED,
                error_message=str(e),
                error_code=type(e).__name__,
                request_headers=record.headers,
                request_body=record.payload,
            )
            raise
        logger.info(
            "Stored %s %s event in %dms", source.value, record.event_type, timer.stop(),
            extra={"source": source.value, "event_id": record.event_id},
        )

    async def start(self) -> None:
        if self.accumulator is not None:
            await self.accumulator.start()

    async def stop(self) -> None:
        """Drain buffered events. Raises BatchFlushError if they cannot be written."""
        if self.accumulator is not None:
            await self.accumulator.stop()


def create_ingestion_service(
    settings: Optional[Settings] = None,
    gateway: Optional[PersistenceGateway] = None,
) -> IngestionService:
    """Wire the pipeline from configuration."""
    settings = settings or get_settings()
    gateway = gateway or PersistenceGateway()
    accumulator = None
    if settings.enable_batching:
        accumulator = BatchAccumulator(
            gateway,
            batch_size=settings.batch_size,
            flush_interval_ms=settings.batch_flush_interval_ms,
        )
    return IngestionService(gateway, DeliveryTracker(gateway), accumulator)
