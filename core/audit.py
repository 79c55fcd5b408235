"""
Audit trail for invoice, payment and submission changes.

Every mutation is logged here, inside the same transaction as the mutation
itself, so a rolled-back change leaves no audit entry behind. The audit log is:
- Append-only (entries never modified or deleted)
- Tenant- and user-attributed (which organization, who made the change)
- Detailed (captures old and new values)
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    for key in set(old.keys()) | set(new.keys()):
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Writes audit entries through an open StoreTransaction.

    Always pass model_dump(mode="json") output so UUIDs, Decimals and
    datetimes land in the JSONB column as plain strings.

    Usage:
        audit = AuditLogger()

        with store.transaction() as tx:
            ...
            audit.log_change(
                tx,
                organization_id=ctx.organization_id,
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.UPDATE,
                changes=compute_changes(old.model_dump(mode="json"), new.model_dump(mode="json")),
                user_id=ctx.user_id,
            )

            history = audit.get_entity_history(tx, "invoice", invoice.id)
    """

    def log_change(
        self,
        tx,
        organization_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None
    ) -> None:
        """
        Log an entity change.

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        tx.insert_audit_entry({
            "id": uuid4(),
            "organization_id": organization_id,
            "user_id": user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action.value,
            "changes": changes,
            "created_at": now_utc(),
        })

    def get_entity_history(self, tx, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """Full audit history for an entity, newest first."""
        return tx.list_audit_entries(entity_type, entity_id)
