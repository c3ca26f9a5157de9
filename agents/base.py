"""Abstract base class for the five pipeline stage agents."""

import os
from abc import ABC, abstractmethod

from config.agents import AGENT_DEFINITIONS
from core.state import AgentConfig

_PROMPT_DIR = os.path.join(os.path.dirname(__file__), "prompts")


def load_prompt(name):
    with open(os.path.join(_PROMPT_DIR, f"{name}.txt")) as f:
        return f.read()


class StageAgent(ABC):
    """Base class that every stage agent must extend.

    An agent owns the default configuration for its role and knows how to
    turn pipeline state into the user message for its stage. It never calls
    the model itself; the orchestrator does.
    """

    role = ""

    @abstractmethod
    def compose_input(self, **kwargs) -> str:
        """Return the user message for this stage."""

    def default_config(self) -> AgentConfig:
        definition = AGENT_DEFINITIONS[self.role]
        return AgentConfig(
            name=definition["name"],
            role=definition["role"],
            model_id=definition["model_id"],
            temperature=definition["temperature"],
            system_prompt=load_prompt(definition["prompt"]),
            max_retries=definition["max_retries"],
        )
