import os
import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import current_app
from google.cloud import firestore
from google.api_core.exceptions import GoogleAPICallError, RetryError, ServiceUnavailable

log = logging.getLogger(__name__)

# -----------------------
# SETTINGS
# -----------------------
EVENTS_COLLECTION = os.getenv("EVENTS_COLLECTION", "campus_events")
MAX_RETRIES = 3
RETRY_SLEEP_SECONDS = 1.0

# Firestore Native database id, not "(default)" (Datastore mode)
FIRESTORE_DB_ID = os.getenv("FIRESTORE_DB_ID", "default")

TRANSIENT_ERRORS = (ServiceUnavailable, GoogleAPICallError, RetryError)

_client: Optional[firestore.Client] = None


def get_client() -> firestore.Client:
    """Lazily build one Firestore client per process."""
    global _client
    if _client is None:
        _client = firestore.Client(database=FIRESTORE_DB_ID)
    return _client


def build_event(reference: Any, user_email: str, event: str, payload: Optional[Dict[str, Any]] = None) -> dict:
    return {
        "reference": str(reference),
        "user_email": user_email or "",
        "event": event,
        "payload": payload or {},
        "created_at": firestore.SERVER_TIMESTAMP,
        "created_at_iso": datetime.now(timezone.utc).isoformat(),
    }


def log_event(reference: Any, user_email: str, event: str, payload: Optional[Dict[str, Any]] = None) -> str:
    """
    Append one event to the Firestore audit trail and return its document id.

    `reference` is whatever the event is about: an order id, a subscription
    id, a user id or a payment intent id. Transient Firestore errors are
    retried with a growing pause; after MAX_RETRIES the last error is raised
    as a RuntimeError.
    """
    doc = build_event(reference, user_email, event, payload)
    events = get_client().collection(EVENTS_COLLECTION)

    last_err = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            ref = events.document()
            ref.set(doc)
            return ref.id
        except TRANSIENT_ERRORS as e:
            last_err = e
            log.warning("Firestore write failed (attempt %s/%s): %s", attempt, MAX_RETRIES, e)
            time.sleep(RETRY_SLEEP_SECONDS * attempt)

    raise RuntimeError(f"Firestore write failed after {MAX_RETRIES} attempts: {last_err}")


def record_event(reference: Any, user_email: str, event: str, payload: Optional[Dict[str, Any]] = None):
    """Log an event from a request handler once its transaction has committed; never raises."""
    if not current_app.config.get("EVENT_LOG_ENABLED"):
        log.debug("event %s for %s (event log disabled)", event, reference)
        return None

    try:
        doc_id = log_event(reference, user_email, event, payload)
    except Exception as e:
        log.error("Firestore log failed for %s %s: %s", event, reference, e)
        return None

    log.info("Firestore wrote %s event %s", event, doc_id)
    return doc_id
