"""
Delivery tracker - writes one webhook_deliveries audit row per processing attempt.

Fire-and-log: a failure to write the audit row is reported and swallowed so
that losing an audit row never aborts processing of the event itself.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from eventsink.schemas.event_records import DeliveryStatus, WebhookSource
from eventsink.services.persistence import PersistenceGateway
from eventsink.utils.errors import DeliveryLoggingError

logger = logging.getLogger(__name__)

UNKNOWN_EVENT_TYPE = "unknown"


class DeliveryTracker:
    def __init__(self, gateway: PersistenceGateway):
        self._gateway = gateway

    async def log_attempt(
        self,
        delivery_id: str,
        source: WebhookSource | str,
        event_type: Optional[str],
        outcome: DeliveryStatus | str,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
        request_headers: Optional[dict] = None,
        request_body: Any = None,
    ) -> bool:
        """Record the outcome of one attempt. Returns False if the row could not be written."""
        source = WebhookSource(source)
        outcome = DeliveryStatus(outcome)
        try:
            await self._record(
                delivery_id=delivery_id,
                source=source,
                event_type=event_type or UNKNOWN_EVENT_TYPE,
                outcome=outcome,
                error_message=error_message,
                error_code=error_code,
                request_headers=request_headers,
                request_body=request_body,
            )
        except DeliveryLoggingError as e:
            logger.error(
                "Failed to log webhook delivery: %s", str(e),
                extra={"source": source.value, "delivery_id": delivery_id},
            )
            return False
        return True

    async def _record(
        self,
        delivery_id: str,
        source: WebhookSource,
        event_type: str,
        outcome: DeliveryStatus,
        error_message: Optional[str],
        error_code: Optional[str],
        request_headers: Optional[dict],
        request_body: Any,
    ) -> None:
        now = datetime.now(timezone.utc)
        try:
            await self._gateway.insert_webhook_delivery(
                delivery_id=delivery_id,
                webhook_source=source.value,
                event_type=event_type,
                status=outcome.value,
                request_headers=request_headers,
                request_body=request_body,
                delivered_at=now if outcome == DeliveryStatus.DELIVERED else None,
                failed_at=now if outcome == DeliveryStatus.FAILED else None,
                error_message=error_message,
                error_code=error_code,
            )
        except Exception as e:
            raise DeliveryLoggingError(
                f"{source.value} delivery {delivery_id[:8]} ({outcome.value}): {e}"
            ) from e
