"""JSON response envelope printed by every swarm-cli command.

A command prints exactly one envelope on stdout. Failures are built from
the :class:`~swarm_cli.errors.SwarmError` that caused them: its ``code``
becomes ``error_code`` and its text lands in ``data["message"]``.
"""

from __future__ import annotations

import uuid
from typing import Any

from swarm_cli.errors import SwarmError
from swarm_cli.events.timestamps import format_iso, utc_now

CONTRACT_VERSION = "1.0.0"
COMMAND_NAMESPACE = "swarm"


def new_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex}"


def make_envelope(
    command: str,
    data: dict[str, Any] | None = None,
    error: SwarmError | None = None,
) -> dict[str, Any]:
    """Wrap a command's payload, or the error that ended it.

    ``data`` is kept on failure too, so ``wait`` can still report the
    agents it saw before timing out.
    """
    payload = dict(data or {})
    if error is not None:
        payload.setdefault("message", str(error))
    return {
        "contract_version": CONTRACT_VERSION,
        "command": f"{COMMAND_NAMESPACE}.{command}",
        "timestamp": format_iso(utc_now()),
        "correlation_id": new_correlation_id(),
        "success": error is None,
        "error_code": error.code if error is not None else None,
        "data": payload,
    }


__all__ = ["CONTRACT_VERSION", "make_envelope", "new_correlation_id"]
