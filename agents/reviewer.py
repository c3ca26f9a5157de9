"""Quality checker agent — approves or rejects generated code."""

from agents.base import StageAgent


class QualityCheckerAgent(StageAgent):
    """Stage 3: review the generated code against the request.

    The reply must start with APPROVE or REJECT; see core.quality.is_approved.
    """

    role = "quality_checker"

    def compose_input(self, code="", user_prompt=""):
        return f"Review this code:\n\n{code}\n\nUser Request: {user_prompt}"
