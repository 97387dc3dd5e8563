import os
import logging

import google.auth
from google.cloud import secretmanager

log = logging.getLogger(__name__)

# names read at startup or per call: STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET,
# RECEIPT_FUNCTION_URL
_sm_client = None
_project = None


def _secret_manager():
    """Client and project id from application default credentials, built once."""
    global _sm_client, _project
    if _sm_client is None:
        creds, project_id = google.auth.default()
        _project = project_id or os.environ.get("GOOGLE_CLOUD_PROJECT")
        _sm_client = secretmanager.SecretManagerServiceClient(credentials=creds)
    return _sm_client, _project


def get_secret(name: str) -> str | None:
    """
    Latest version of a Secret Manager secret, or None when unavailable.

    An environment variable of the same name wins, so local runs and tests
    never reach Google Cloud.
    """
    value = os.environ.get(name)
    if value:
        return value

    try:
        client, project = _secret_manager()
        if not project:
            log.info("No Google Cloud project configured; secret %s unavailable", name)
            return None
        resp = client.access_secret_version(
            request={"name": f"projects/{project}/secrets/{name}/versions/latest"}
        )
    except Exception as e:
        log.warning("Secret Manager read failed for %s: %s", name, e)
        return None

    return resp.payload.data.decode("utf-8").strip()
