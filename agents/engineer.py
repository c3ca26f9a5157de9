"""Production engineer agent — hardens approved code into file changes."""

from agents.base import StageAgent


class EngineerAgent(StageAgent):
    """Stage 4: enterprise hardening. Output follows the <<FILE:...>> grammar."""

    role = "engineer"

    def compose_input(self, code="", file_paths=None):
        message = f"Enhance this approved code to enterprise standards:\n\n{code}"
        if file_paths:
            listing = "\n".join(f"- {path}" for path in file_paths)
            message += (
                "\n\nExisting project files (use these exact paths when modifying them):\n"
                f"{listing}"
            )
        return message
