import json
from datetime import datetime, timezone

from google.cloud import firestore

PURPOSES = ("order", "subscription", "wallet-topup")

_db = None


def get_db():
    global _db
    if _db is None:
        _db = firestore.Client()
    return _db


def create_receipt(request):
    """
    HTTP Cloud Function
    - Expects JSON: { "reference": "123", "email": "x@mlrit.ac.in", "total": 130.0, "purpose": "order" }
    - Writes a receipt document to Firestore
    - Returns: { "ok": true, "receipt_id": "...", "created_at": "..." }
    """
    try:
        data = request.get_json(silent=True) or {}
        reference = data.get("reference")
        email = data.get("email")
        total = data.get("total")
        purpose = data.get("purpose") or "order"

        if not reference or not email or total is None:
            return ("Missing reference/email/total", 400)
        if purpose not in PURPOSES:
            return ("Unknown purpose", 400)

        created_at = datetime.now(timezone.utc).isoformat()

        doc = {
            "reference": str(reference),
            "email": email,
            "total": float(total),
            "purpose": purpose,
            "created_at": created_at,
            "source": "cloud_function"
        }

        ref = get_db().collection("receipts").add(doc)[1]

        return (json.dumps({
            "ok": True,
            "receipt_id": ref.id,
            "created_at": created_at
        }), 200, {"Content-Type": "application/json"})

    except Exception as e:
        return (f"Error: {str(e)}", 500)
