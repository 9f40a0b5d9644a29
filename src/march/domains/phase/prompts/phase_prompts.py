"""MCP prompts: interaction templates for weekly phase check-ins."""

from __future__ import annotations

from fastmcp import FastMCP


def register_phase_prompts(mcp: FastMCP) -> None:
    """Register phase domain MCP prompts."""

    @mcp.prompt()
    def weekly_phase_review_prompt(client_id: str) -> str:
        """Prompt template for a coach's weekly phase review of one client."""
        return f"""Please review this week's M.A.R.C.H. phase for client {client_id}:

1. Compute the phase for the current week
2. Explain which signals drove the decision and how confident it is
3. Summarize the phase guidance: focus, training adjustments, nutrition tips
4. List the red flags I should watch for before next week

If confidence is low, tell me which data is missing."""

    @mcp.prompt()
    def phase_trend_prompt(client_id: str, weeks: int = 8) -> str:
        """Prompt template for reviewing phase changes over several weeks."""
        return f"""Show me how client {client_id}'s phase has changed over the last {weeks} weeks.

Point out any transitions, how long each phase lasted compared to its suggested
duration, and whether the client looks ready to progress."""
