"""
Persisted "paid" flags using JSON files, one per client.
A flag survives restarts and unlocks any gated letter for that client.
"""
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional
from state import PaidRecord

logger = logging.getLogger(__name__)

STORAGE_DIR = Path(__file__).parent / "storage" / "paid"

# Client ids become file names
_SAFE_CLIENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def is_valid_client_id(client_id: Optional[str]) -> bool:
    return bool(client_id) and bool(_SAFE_CLIENT_ID.match(client_id))


def _record_path(client_id: str) -> Path:
    if not is_valid_client_id(client_id):
        raise ValueError(f"Invalid client id: {client_id!r}")
    return STORAGE_DIR / f"{client_id}.json"


def mark_paid(
    client_id: str,
    session_id: Optional[str] = None,
    letter_id: Optional[str] = None,
) -> PaidRecord:
    """Set the paid flag for a client."""
    file_path = _record_path(client_id)
    STORAGE_DIR.mkdir(parents=True, exist_ok=True)

    record: PaidRecord = {
        "client_id": client_id,
        "paid": True,
        "session_id": session_id,
        "letter_id": letter_id,
        "paid_at": datetime.now().isoformat(),
    }

    with open(file_path, 'w') as f:
        json.dump(record, f, indent=2, default=str)

    logger.info(f"Saved paid flag for client {client_id}")
    return record


def load_paid_record(client_id: str) -> Optional[PaidRecord]:
    """Load a client's paid record from disk."""
    file_path = _record_path(client_id)

    if not file_path.exists():
        return None

    with open(file_path, 'r') as f:
        record = json.load(f)

    if not isinstance(record, dict):
        logger.warning(f"Ignoring malformed paid record for {client_id}")
        return None

    return record


def is_paid(client_id: Optional[str]) -> bool:
    """True when the client has a persisted paid flag."""
    if not client_id:
        return False

    try:
        record = load_paid_record(client_id)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Error loading paid flag for {client_id}: {e}")
        return False
    except ValueError:
        # Unsafe client id
        return False

    return bool(record and record.get("paid"))


def clear_paid(client_id: str) -> bool:
    """Remove a client's paid flag."""
    file_path = _record_path(client_id)

    if file_path.exists():
        file_path.unlink()
        logger.info(f"Cleared paid flag for client {client_id}")
        return True

    return False
