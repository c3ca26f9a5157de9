"""Pipeline state models shared across all stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from core.issues import IssueSnapshot

# Stage statuses
PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
COMPLETED_WITH_WARNINGS = "completed_with_warnings"
REJECTED = "rejected"
FAILED = "failed"

CONTEXT_MODES = ("prompt_only", "active_file", "selected_files", "full_project")
FAILURE_TYPES = ("none", "quota", "cooldown", "other")
PRIORITIES = ("high", "normal", "low")


@dataclass(frozen=True)
class AgentConfig:
    name: str
    role: str
    model_id: str
    temperature: float
    system_prompt: str
    max_retries: int = 1


@dataclass
class PipelineStage:
    id: str                             # "stage1" .. "stage5"
    name: str
    agent_config: AgentConfig
    status: str = PENDING
    input: str = ""
    output: str = ""
    error: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    retry_count: int = 0
    resolved_model: str | None = None   # model that produced `output`; may be "fallback:<provider>"

    @property
    def model(self):
        return self.resolved_model or self.agent_config.model_id


@dataclass
class DiffLine:
    kind: str                           # "common", "added", "removed", "modified"
    old_line_number: int | None = None
    new_line_number: int | None = None
    old_content: str = ""
    new_content: str = ""
    old_parts: list[tuple[str, str]] = field(default_factory=list)   # (kind, text)
    new_parts: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class QualityAttempt:
    attempt: int
    status: str                         # "approved" | "rejected"
    generator_model: str
    quality_model: str
    generated_code: str
    reviewer_feedback: str
    previous_generated_code: str | None = None
    diff: list[DiffLine] | None = None


@dataclass
class StageTranscript:
    stage_id: str
    stage_name: str
    model: str
    input: str
    output: str
    attempt: int | None = None
    started_at: str | None = None
    ended_at: str | None = None


@dataclass
class ContextFile:
    path: str
    content: str


@dataclass(frozen=True)
class ContextPayload:
    aggregated_text: str
    summary_text: str
    file_map: dict[str, str]
    active_file_path: str | None = None
    truncated: bool = False


@dataclass
class FileChange:
    path: str
    change_summary: str
    updated_content: str
    original_content: str | None = None
    diff: list[DiffLine] | None = None
    is_new_file: bool = True


@dataclass
class RunRequest:
    user_prompt: str
    context_mode: str = "prompt_only"
    files: list[ContextFile] = field(default_factory=list)
    active_file: ContextFile | None = None
    max_characters: int | None = None
    max_quality_retries: int | None = None   # 1-5, default 3
    issue_snapshot: IssueSnapshot | None = None
    priority: str = "normal"


@dataclass
class PipelineReport:
    analysis_summary: str
    quality_attempts: list[QualityAttempt] = field(default_factory=list)
    production_engineer_output: str = ""
    final_validator_output: str = ""
    stage_transcripts: list[StageTranscript] = field(default_factory=list)
    issue_snapshot: IssueSnapshot | None = None
    missing_features: list[str] = field(default_factory=list)
    improvement_recommendations: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    success: bool
    final_code: str
    stages: list[PipelineStage]
    total_duration: float               # seconds
    quality_score: int
    file_changes: list[FileChange] = field(default_factory=list)
    production_summary: str | None = None
    warnings: list[str] = field(default_factory=list)
    report: PipelineReport | None = None
    failure_type: str = "none"          # none|quota|cooldown|other
    error: str | None = None
