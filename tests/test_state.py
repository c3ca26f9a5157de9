"""Tests for core.state models."""

import dataclasses

import pytest

from core.state import (
    PENDING,
    ContextFile,
    ContextPayload,
    FileChange,
    PipelineResult,
    PipelineStage,
    RunRequest,
)


def test_agent_config_is_frozen(agent_config):
    with pytest.raises(dataclasses.FrozenInstanceError):
        agent_config.model_id = "other"


def test_agent_config_replace_keeps_original(agent_config):
    updated = dataclasses.replace(agent_config, model_id="fallback:Groq")
    assert updated.model_id == "fallback:Groq"
    assert agent_config.model_id == "claude-sonnet-4-5-20250929"


def test_pipeline_stage_defaults(agent_config):
    stage = PipelineStage(id="stage1", name="Code Analysis", agent_config=agent_config)
    assert stage.status == PENDING
    assert stage.retry_count == 0
    assert stage.output == ""
    assert stage.error is None


def test_run_request_defaults():
    req = RunRequest(user_prompt="add logging")
    assert req.context_mode == "prompt_only"
    assert req.files == []
    assert req.active_file is None
    assert req.priority == "normal"


def test_context_payload_is_frozen():
    payload = ContextPayload(aggregated_text="", summary_text="", file_map={})
    with pytest.raises(dataclasses.FrozenInstanceError):
        payload.truncated = True


def test_file_change_defaults_to_new_file():
    change = FileChange(path="a.py", change_summary="new", updated_content="x = 1")
    assert change.is_new_file is True
    assert change.diff is None


def test_pipeline_result_defaults(agent_config):
    stage = PipelineStage(id="stage1", name="Code Analysis", agent_config=agent_config)
    result = PipelineResult(success=True, final_code="", stages=[stage],
                            total_duration=0.5, quality_score=75)
    assert result.failure_type == "none"
    assert result.warnings == []
    assert result.file_changes == []


def test_context_file_fields():
    f = ContextFile(path="src/app.py", content="print('hi')")
    assert f.path == "src/app.py"


def test_stage_model_prefers_resolved_model(agent_config):
    stage = PipelineStage(id="stage1", name="Code Analysis", agent_config=agent_config)
    assert stage.model == agent_config.model_id
    stage.resolved_model = "fallback:Groq"
    assert stage.model == "fallback:Groq"
    assert stage.agent_config.model_id == "claude-sonnet-4-5-20250929"
