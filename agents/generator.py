"""Generator agent — produces a solution from the analysis report."""

from agents.base import StageAgent


class GeneratorAgent(StageAgent):
    """Stage 2: generate code; re-run with reviewer feedback after a rejection."""

    role = "generator"

    def compose_input(self, analysis="", user_prompt="", feedback=None, previous_code=None):
        message = (
            f"Analysis Report:\n{analysis}\n\n"
            f"User Request: {user_prompt}\n\n"
            "Generate production-ready code."
        )
        if feedback and previous_code:
            message += (
                "\n\nYour previous attempt was rejected by the Quality Checker.\n"
                f"Previous attempt:\n{previous_code}\n\n"
                f"Reviewer feedback:\n{feedback}\n\n"
                "Address every point in the feedback."
            )
        return message
