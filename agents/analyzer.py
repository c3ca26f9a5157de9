"""Analyzer agent — reads the request, project context and known issues."""

from agents.base import StageAgent
from core.state import ContextPayload


class AnalyzerAgent(StageAgent):
    """Stage 1: comprehensive analysis of the request and supplied context."""

    role = "analyzer"

    def compose_input(self, user_prompt="", context: ContextPayload = None, issue_summary=None):
        aggregated = context.aggregated_text if context is not None else ""
        summary = context.summary_text if context is not None else ""

        if aggregated.strip():
            code_section = (
                "===== PROJECT CODE CONTEXT START =====\n"
                f"{aggregated}\n"
                "===== PROJECT CODE CONTEXT END ====="
            )
        else:
            code_section = "NO CODE CONTEXT PROVIDED"

        issues_section = "PROJECT ISSUE SNAPSHOT:\n" + (
            issue_summary or "No existing analyzer data available."
        )

        return "\n\n".join([
            "You are the Code Analyzer stage of a multi-agent production pipeline.",
            "Perform comprehensive analysis of the supplied project context and user request.",
            f"USER PROMPT:\n{user_prompt}",
            f"CONTEXT SUMMARY:\n{summary}",
            code_section,
            issues_section,
        ])
