"""MCP tools for weekly M.A.R.C.H. phase assessments.

Each assessment is returned together with the decided phase's coaching
guidance and the assessment-specific transition recommendations.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from march.domains.phase.domain_logic.guidance import (
    get_phase_guidance,
    get_phase_transition_recommendations,
)
from march.domains.phase.domain_logic.phase_models import MarchPhaseAssessment
from march.domains.phase.errors import MarchError, UpstreamDataError

if TYPE_CHECKING:
    from march.core.audit.logger import AuditLogger
    from march.domains.phase.domain_logic.phase_service import MarchPhaseService

logger = logging.getLogger(__name__)


def describe_assessment(assessment: MarchPhaseAssessment, *, with_recommendations: bool = True) -> dict[str, Any]:
    """Assessment + guidance (+ recommendations) as a JSON-ready dict."""
    phase = assessment.decided_phase
    result: dict[str, Any] = {
        "assessment": assessment.to_dict(),
        "guidance": get_phase_guidance(phase).to_dict(),
    }
    if with_recommendations:
        result["recommendations"] = get_phase_transition_recommendations(phase, assessment)
    return result


def error_response(exc: MarchError) -> str:
    status = "unavailable" if isinstance(exc, UpstreamDataError) else "error"
    return json.dumps({
        "status": status,
        "error_type": type(exc).__name__,
        "message": str(exc),
    })


def _audit(
    audit_logger: AuditLogger | None,
    tool_name: str,
    tool_input: dict[str, Any],
    start_time: float,
    exc: Exception | None = None,
) -> None:
    if audit_logger is None:
        return
    audit_logger.log_tool_call(
        tool_name=tool_name,
        tool_input=tool_input,
        client_id=tool_input.get("client_id"),
        duration_ms=(time.monotonic() - start_time) * 1000,
        status="failure" if exc is not None else "success",
        error_type=type(exc).__name__ if exc is not None else None,
    )


def register_march_phase_tools(
    mcp: FastMCP,
    service: MarchPhaseService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register phase assessment tools on the MCP server."""

    @mcp.tool
    async def get_march_phase(
        ctx: Context,
        client_id: str,
        week_start: str = "",
    ) -> str:
        """Get a client's current M.A.R.C.H. phase with guidance and recommendations.

        Returns status 'not_found' when no assessment has been computed yet
        (or none for the requested week).

        Args:
            client_id: The client to look up.
            week_start: Look up one past week (ISO 8601 date) instead of the latest.
        """
        start_time = time.monotonic()
        tool_input = {"client_id": client_id, "week_start": week_start}
        try:
            if week_start:
                assessment = service.get_week_phase(client_id, week_start)
            else:
                assessment = service.get_current_phase(client_id)
            weekly_status = service.get_weekly_status(client_id)
        except MarchError as exc:
            _audit(audit_logger, "get_march_phase", tool_input, start_time, exc)
            return error_response(exc)

        _audit(audit_logger, "get_march_phase", tool_input, start_time)
        if assessment is None:
            return json.dumps({
                "status": "not_found",
                "client_id": client_id,
                "message": "No phase assessment yet. Call compute_march_phase after logging data.",
                "weekly_status": weekly_status,
            })
        return json.dumps({
            "status": "ok",
            **describe_assessment(assessment),
            "weekly_status": weekly_status,
        }, indent=2)

    @mcp.tool
    async def compute_march_phase(
        ctx: Context,
        client_id: str,
        week_start: str = "",
    ) -> str:
        """Compute (or recompute) a client's phase for one week.

        A recomputation appends a new record that supersedes earlier ones
        for the same week.

        Args:
            client_id: The client to assess.
            week_start: First day of the week (ISO 8601 date). Defaults to this week's Monday.
        """
        start_time = time.monotonic()
        tool_input = {"client_id": client_id, "week_start": week_start}
        try:
            assessment = service.compute_weekly_assessment(client_id, week_start or None)
        except MarchError as exc:
            _audit(audit_logger, "compute_march_phase", tool_input, start_time, exc)
            return error_response(exc)

        _audit(audit_logger, "compute_march_phase", tool_input, start_time)
        return json.dumps({"status": "computed", **describe_assessment(assessment)}, indent=2)

    @mcp.tool
    async def march_phase_history(
        ctx: Context,
        client_id: str,
        limit: int = 0,
    ) -> str:
        """List a client's past phase assessments, most recent first.

        Args:
            client_id: The client to look up.
            limit: Maximum entries (default: the configured history limit, 12).
        """
        start_time = time.monotonic()
        tool_input = {"client_id": client_id, "limit": limit}
        try:
            history = service.get_phase_history(client_id, limit or None)
        except MarchError as exc:
            _audit(audit_logger, "march_phase_history", tool_input, start_time, exc)
            return error_response(exc)

        _audit(audit_logger, "march_phase_history", tool_input, start_time)
        return json.dumps({
            "status": "ok",
            "client_id": client_id,
            "count": len(history),
            "history": [describe_assessment(a, with_recommendations=False) for a in history],
        }, indent=2)

    @mcp.tool
    async def march_weekly_status(
        ctx: Context,
        client_id: str,
    ) -> str:
        """Show this week's data coverage and when the next computation is due.

        Args:
            client_id: The client to look up.
        """
        try:
            weekly_status = service.get_weekly_status(client_id)
        except MarchError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", "client_id": client_id, **weekly_status})

    @mcp.tool
    async def march_phase_guidance(
        ctx: Context,
        phase: str,
    ) -> str:
        """Get the static coaching guidance for one phase.

        Args:
            phase: MITOCHONDRIA, ABSORPTION_DETOX, RESILIENCE, CYCLICAL or HYPERTROPHY_HEALTHSPAN.
        """
        try:
            guidance = get_phase_guidance(phase)
        except MarchError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", "guidance": guidance.to_dict()}, indent=2)
