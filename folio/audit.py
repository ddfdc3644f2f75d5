"""
Audit sink: fire-and-forget processing events.

Every action handler reports one event here (success or failure), tagged with
the ingestion and user it belongs to. This is separate from the trace an
action returns: the trace goes back to the immediate caller, audit events go
to the processing_events table for anyone watching the ingestion.

Writes happen on a daemon thread. A failed write is logged at WARNING and
dropped; it never reaches the pipeline and never delays the next action.
"""
import json
import logging
import threading
import uuid

logger = logging.getLogger(__name__)


class AuditSink:
    """
    Args:
        background - write on a detached daemon thread (default). Pass False
                     to write inline, e.g. in tests that read the table back.
    """

    def __init__(self, background: bool = True):
        self._background = background

    def log_event(
        self,
        ingestion_id: str,
        user_id: str,
        category: str,
        title: str,
        details: dict,
        store=None,
    ) -> None:
        if store is None:
            logger.debug("No store for audit event on %s (%s), skipping", ingestion_id, title)
            return
        args = (ingestion_id, user_id, category, title, details, store)
        if self._background:
            threading.Thread(target=self._write, args=args, daemon=True).start()
        else:
            self._write(*args)

    def _write(self, ingestion_id, user_id, category, title, details, store) -> None:
        try:
            with store.connect() as conn:
                conn.execute(
                    """INSERT INTO processing_events
                       (id, ingestion_id, user_id, event_type, agent_state, details)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (str(uuid.uuid4()), ingestion_id, user_id, category, title,
                     json.dumps(details, default=str)),
                )
        except Exception as e:
            logger.warning("Audit event failed for ingestion %s: %s", ingestion_id, e)
