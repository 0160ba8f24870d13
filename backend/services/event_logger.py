"""
Contrat de Vente - Event Logger

Centralized audit trail for all sensitive contract actions.
Single function to call from the store implementations.
"""

import uuid
from config import now_iso


async def log_event(
    collection,
    action: str,
    entity_type: str,
    entity_id: str,
    role: str = "system",
    details: dict = None,
):
    """
    Write a single event to the event_log collection.

    Args:
        collection: motor collection (db.event_log)
        action: e.g. contract_create, cin_verified, contract_validate, version_conflict
        entity_type: contract
        entity_id: ID of the contract
        role: fournisseuse | distributrice | system
        details: free-form dict (side, reason, version, etc.)
    """
    event = {
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "role": role,
        "details": details or {},
        "created_at": now_iso()
    }
    await collection.insert_one(event)
    return event
