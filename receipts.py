import logging

import requests

from secret_store import get_secret

log = logging.getLogger(__name__)


def send_receipt(reference, email, total, purpose: str = "order"):
    """
    Calls the receipt Cloud Function after a payment completes.
    Skipped when RECEIPT_FUNCTION_URL is not configured.
    """
    url = get_secret("RECEIPT_FUNCTION_URL")

    if not url:
        log.info("RECEIPT_FUNCTION_URL not set; skipping receipt for %s %s.", purpose, reference)
        return None

    try:
        resp = requests.post(
            url,
            json={
                "reference": str(reference),
                "email": str(email or ""),
                "total": float(total),
                "purpose": purpose,
            },
            timeout=10,
        )
        log.info("Receipt: %s %s", resp.status_code, resp.text)
        return resp.status_code
    except requests.RequestException as e:
        log.warning("Receipt function failed: %s", e)
        return None
