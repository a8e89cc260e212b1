"""
Audit Logger

DESIGN DECISION: Every significant sync step is logged.
This provides:
1. Traceability of each mutation from enqueue to confirmation
2. Debugging capability for failed replays
3. Visibility into conflicts the engine resolved on its own

The audit logger:
- Is synchronous, so it can run inside store mutations and the sync loop
- Never raises because of a logging problem
- Supports correlation IDs to trace all events of one sync pass
"""

import logging
from typing import Optional
from uuid import uuid4

import structlog

from finsync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))
    logging.getLogger("finsync").setLevel(getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Writes every event to the structured log at the level matching
    its severity.
    """

    def __init__(self, logger_name: str = "finsync.audit"):
        self._logger = structlog.get_logger(logger_name)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be written.
        """
        try:
            log_dict = event.to_log_dict()

            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            logging.getLogger("finsync.audit").error(
                "audit_log_failed event_type=%s event_id=%s error=%s",
                event.event_type.value,
                event.event_id,
                e,
            )
            return False

        return True

    def log_status_changed(
        self,
        previous: str,
        current: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Log a sync status transition."""
        if previous == current:
            return
        self.log(AuditEventBuilder.status_changed(previous, current, correlation_id))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> str:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a sync pass and pass it through every
    event the pass produces.
    """
    return str(uuid4())
