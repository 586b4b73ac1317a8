from apps.audit.models import AuditLog


def record_audit(*, actor, action, entity_type, entity_id, payload=None):
    payload = payload or {}
    return AuditLog.objects.create(
        actor=actor,
        employee_id=str(payload.get("employee_id", "")),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payload=payload,
    )


def audit_trail(entity_type, entity_id):
    """Audit rows of one entity, oldest first."""
    return AuditLog.objects.filter(entity_type=entity_type, entity_id=str(entity_id)).order_by("created_at")
