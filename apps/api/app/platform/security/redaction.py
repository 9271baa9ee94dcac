from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from app.metrics import observe_redacted_fields
from app.platform.security.context import Principal
from app.platform.security.ownership import ResourceType, normalize_ref
from app.platform.security.roles import is_admin


logger = logging.getLogger("app.security")

PASSWORD_FIELD = "password"
SELF_EDITABLE_FIELDS = frozenset({"first_name", "last_name"})


def redact(actor: Principal, target_id: Any, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Filter a user-update payload down to what ``actor`` may set on ``target_id``.

    Passwords are never accepted here; they change through the dedicated
    verify-old-password flow. A non-admin editing their own profile keeps only
    the name fields. This is not an authorization gate: non-self edits by
    non-admins must already have been refused by the policy table.
    """

    output = {key: value for key, value in payload.items() if key != PASSWORD_FIELD}

    if actor.id == normalize_ref(target_id) and not is_admin(actor):
        output = {key: value for key, value in output.items() if key in SELF_EDITABLE_FIELDS}

    dropped = sorted(set(payload) - set(output))
    if dropped:
        observe_redacted_fields(resource=ResourceType.USER.value, count=len(dropped))
        logger.info(
            "security.redaction",
            extra={
                "resource": ResourceType.USER.value,
                "principal_id": actor.id,
                "entity_id": normalize_ref(target_id),
                "dropped_fields": dropped,
            },
        )
    return output
