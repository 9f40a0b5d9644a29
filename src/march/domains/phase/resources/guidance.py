"""MCP resources for phase guidance discovery."""

from __future__ import annotations

import json

from fastmcp import FastMCP

from march.domains.phase.domain_logic.guidance import all_phase_guidance, get_phase_guidance


def register_guidance_resources(mcp: FastMCP) -> None:
    """Register static guidance resources on the MCP server."""

    @mcp.resource("march://guidance")
    def march_guidance_resource() -> str:
        """Coaching guidance for all five M.A.R.C.H. phases, in priority order."""
        guidance = all_phase_guidance()
        return json.dumps(
            {
                "phase_count": len(guidance),
                "phases": [g.to_dict() for g in guidance],
            },
            indent=2,
        )

    @mcp.resource("march://guidance/{phase}")
    def march_phase_guidance_resource(phase: str) -> str:
        """Coaching guidance for one phase."""
        return json.dumps(get_phase_guidance(phase).to_dict(), indent=2)
