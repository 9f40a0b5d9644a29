"""MCP tools for client data deletion, retention and the audit trail.

All deletions are audit-logged. The audit trail holds hashes only.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from march.domains.phase.errors import MarchError
from march.domains.phase.tools.march_phase_tools import error_response

if TYPE_CHECKING:
    from march.core.audit.logger import AuditLogger
    from march.core.storage.repository import MarchRepository
    from march.domains.phase.connectors import MarchSampleSource

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "DELETE_CLIENT_DATA"


def register_data_management_tools(
    mcp: FastMCP,
    source: MarchSampleSource,
    *,
    repository: MarchRepository | None = None,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register data management tools on the MCP server.

    ``purge_old_samples`` and ``audit_summary`` need the SQLite store and
    are only registered when a repository/audit logger is given.
    """

    @mcp.tool
    async def delete_client_data(
        ctx: Context,
        client_id: str,
        confirm: str = "",
    ) -> str:
        """Permanently delete every sample, baseline and assessment of one client.

        Args:
            client_id: The client whose data is removed.
            confirm: Must be exactly 'DELETE_CLIENT_DATA' to proceed. Safety gate.
        """
        if confirm != DELETE_CONFIRMATION:
            return json.dumps({
                "status": "cancelled",
                "message": (
                    f"To delete this client's data, call this tool with "
                    f"confirm='{DELETE_CONFIRMATION}'. This action cannot be undone."
                ),
            })
        if not client_id or not client_id.strip():
            return json.dumps({"status": "error", "message": "client_id is required"})

        start_time = time.monotonic()
        try:
            count = source.delete_client_data(client_id)
        except MarchError as exc:
            return error_response(exc)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_client_data",
                client_id=client_id,
                count=count,
                metadata={"confirmed": True},
            )

        return json.dumps({
            "status": "deleted",
            "client_id": client_id,
            "records_deleted": count,
            "duration_ms": round(elapsed_ms, 1),
        })

    if repository is not None:

        @mcp.tool
        async def purge_old_samples(
            ctx: Context,
            older_than_days: int = 365,
        ) -> str:
            """Delete raw samples older than a number of days (all clients).

            Assessments are kept; they contain scores, not raw readings.

            Args:
                older_than_days: Delete samples older than this many days (default: 365).
            """
            if older_than_days < 1:
                return json.dumps({
                    "status": "error",
                    "message": "older_than_days must be at least 1.",
                })

            count = repository.purge_samples_before_days(older_than_days)
            if audit_logger is not None and count > 0:
                audit_logger.log_data_delete(
                    tool_name="purge_old_samples",
                    count=count,
                    metadata={"older_than_days": older_than_days},
                )
            return json.dumps({
                "status": "purged",
                "samples_deleted": count,
                "older_than_days": older_than_days,
            })

    if audit_logger is not None:

        @mcp.tool
        async def audit_summary(
            ctx: Context,
            days: int = 30,
        ) -> str:
            """View recent tool invocations and deletions from the audit trail.

            Args:
                days: Number of days to look back (default: 30).
            """
            since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
            events = audit_logger.get_events(since=since, limit=20)
            return json.dumps({
                "status": "ok",
                "period_days": days,
                "total_events": audit_logger.count_events(since=since),
                "recent_events": [
                    {
                        "timestamp": event.get("timestamp"),
                        "action": event.get("action"),
                        "tool_name": event.get("tool_name"),
                        "status": event.get("status"),
                        "duration_ms": event.get("duration_ms"),
                    }
                    for event in events
                ],
                "note": "The audit trail stores hashes only; it contains no health readings.",
            }, indent=2)
