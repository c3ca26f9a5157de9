"""Default agent definitions for the five pipeline stages.

System prompts live in agents/prompts/<prompt>.txt and are loaded when the
orchestrator builds its registry.
"""

from config.defaults import DEFAULTS

STAGE_ROLES = ["analyzer", "generator", "quality_checker", "engineer", "validator"]

AGENT_DEFINITIONS = {
    "analyzer": {
        "name": "Code Analyzer",
        "role": "The Detective",
        "model_id": DEFAULTS["model"],
        "temperature": 0.3,
        "prompt": "analyzer",
        "max_retries": 2,
    },
    "generator": {
        "name": "Solution Architect",
        "role": "The Builder",
        "model_id": DEFAULTS["model"],
        "temperature": 0.45,
        "prompt": "generator",
        "max_retries": 2,
    },
    "quality_checker": {
        "name": "Quality Inspector",
        "role": "The Reviewer",
        "model_id": DEFAULTS["model"],
        "temperature": 0.2,
        "prompt": "quality_checker",
        "max_retries": 2,
    },
    "engineer": {
        "name": "Production Engineer",
        "role": "The Hardener",
        "model_id": DEFAULTS["model"],
        "temperature": 0.35,
        "prompt": "engineer",
        "max_retries": 1,
    },
    "validator": {
        "name": "Chief Auditor",
        "role": "The Gatekeeper",
        "model_id": DEFAULTS["model"],
        "temperature": 0.25,
        "prompt": "validator",
        "max_retries": 1,
    },
}

# (stage id, display name, role key) in execution order
STAGES = [
    ("stage1", "Code Analysis", "analyzer"),
    ("stage2", "Solution Generation", "generator"),
    ("stage3", "Quality Check", "quality_checker"),
    ("stage4", "Production Engineering", "engineer"),
    ("stage5", "Final Validation", "validator"),
]
