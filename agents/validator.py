"""Validator agent — final audit and quality score."""

from agents.base import StageAgent


class ValidatorAgent(StageAgent):
    """Stage 5: final audit of the hardened output; reports a quality score."""

    role = "validator"

    def compose_input(self, hardened_output=""):
        return f"Final validation of production code:\n\n{hardened_output}"
