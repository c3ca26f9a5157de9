"""Main pipeline orchestrator — five stages with a bounded quality-gate loop.

Analyze → Generate ⇄ Quality-Check → Harden → Validate. Every model call is
one unit of work on the shared RequestScheduler. Quota failures walk a short
list of candidate models, then the fallback providers; the QuotaTracker
decides whether a run may start at all and how cheaply it should run.
"""

import functools
import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime

from agents.analyzer import AnalyzerAgent
from agents.engineer import EngineerAgent
from agents.generator import GeneratorAgent
from agents.report_composer import ReportComposer
from agents.reviewer import QualityCheckerAgent
from agents.validator import ValidatorAgent
from config.agents import STAGE_ROLES, STAGES
from config.defaults import DEFAULTS
from config.providers import FALLBACK_PROVIDERS
from core.context import assemble
from core.errors import (
    CooldownActiveError,
    FallbackExhaustedError,
    QuotaExhaustedError,
    error_text,
    is_quota_error,
)
from core.output_parser import parse_output
from core.quality import extract_quality_score, is_approved, max_quality_attempts
from core.state import (
    COMPLETED,
    COMPLETED_WITH_WARNINGS,
    FAILED,
    IN_PROGRESS,
    PENDING,
    PRIORITIES,
    REJECTED,
    PipelineReport,
    PipelineResult,
    PipelineStage,
    QualityAttempt,
    RunRequest,
    StageTranscript,
)
from utils import llm
from utils.diff import diff_lines
from utils.fallback import FallbackSelector

logger = logging.getLogger(__name__)

REJECTED_ALL_WARNING = "Quality Checker rejected all attempts. Proceeding with latest generated code."
NO_FEEDBACK_WARNING = "Quality Checker did not provide feedback."

# AgentConfig fields a persisted configuration may override
_CONFIGURABLE_FIELDS = ("name", "role", "model_id", "temperature", "system_prompt", "max_retries")


def candidate_models(model_id, degraded=False):
    """Models to try for one stage call, most preferred first, de-duplicated."""
    primary = llm.normalize_model(model_id)
    cheap = DEFAULTS["cheap_model"]
    safe = DEFAULTS["safe_fallback_model"]
    ordered = [cheap, primary, safe] if degraded else [primary, cheap, safe]

    candidates = []
    for candidate in ordered:
        candidate = llm.normalize_model(candidate)
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def truncate_transcript(text, limit=None):
    limit = limit or DEFAULTS["transcript_snippet_limit"]
    text = text or ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n… [{len(text) - limit} characters truncated]"


def _provider_guidance():
    return "\n".join(f"   - {p['name']} ({p['key_url']})" for p in FALLBACK_PROVIDERS)


def _quota_guidance_no_providers():
    return (
        "Primary API quota exceeded for all configured models.\n\n"
        "To continue working:\n"
        f"1. Wait for quota to reset (check {DEFAULTS['usage_url']})\n"
        "2. Or add a FREE API key for one of the fallback providers:\n"
        f"{_provider_guidance()}"
    )


def _quota_guidance_fallback_failed(fallback_error):
    return (
        "Primary API quota exceeded and fallback providers also failed.\n\n"
        "To fix this:\n"
        f"1. Wait for quota to reset (check {DEFAULTS['usage_url']})\n"
        "2. Or add a working API key for another fallback provider\n\n"
        f"Fallback error: {fallback_error}"
    )


class Orchestrator:
    """Runs the five-stage pipeline against a shared scheduler and quota tracker.

    The agent registry (role -> AgentConfig) lives here and may be changed
    between runs; each run snapshots it into its own PipelineStage objects.
    """

    def __init__(self, scheduler, quota, chat=None, fallback=None, issues=None, agents=None):
        self.scheduler = scheduler
        self.quota = quota
        self.chat = chat or llm.chat
        self.fallback = fallback if fallback is not None else FallbackSelector()
        self.issues = issues

        self.analyzer = AnalyzerAgent()
        self.generator = GeneratorAgent()
        self.reviewer = QualityCheckerAgent()
        self.engineer = EngineerAgent()
        self.validator = ValidatorAgent()
        self.report_composer = ReportComposer()

        stage_agents = (self.analyzer, self.generator, self.reviewer, self.engineer, self.validator)
        self._agents = {agent.role: agent.default_config() for agent in stage_agents}
        for role, config in (agents or {}).items():
            self.set_agent(role, config)

    # ------------------------------------------------------------------
    # Agent registry
    # ------------------------------------------------------------------

    def _check_role(self, role):
        if role not in STAGE_ROLES:
            raise ValueError(f"Unknown agent role '{role}'. Expected one of: {', '.join(STAGE_ROLES)}")

    def get_agent(self, role):
        self._check_role(role)
        return self._agents[role]

    def get_all_agents(self):
        return dict(self._agents)

    def set_agent(self, role, config):
        self._check_role(role)
        self._agents[role] = replace(config, model_id=llm.normalize_model(config.model_id))

    def update_agent(self, role, **changes):
        self._check_role(role)
        unknown = set(changes) - set(_CONFIGURABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown agent fields: {', '.join(sorted(unknown))}")
        if "model_id" in changes:
            changes["model_id"] = llm.normalize_model(changes["model_id"])
        self._agents[role] = replace(self._agents[role], **changes)
        return self._agents[role]

    def apply_persisted_configs(self, configs):
        """Apply saved {role: {field: value}} overrides; unknown roles and fields are skipped."""
        for role, fields in (configs or {}).items():
            if role not in STAGE_ROLES:
                logger.warning("Ignoring persisted config for unknown agent role %s", role)
                continue
            changes = {k: v for k, v in fields.items() if k in _CONFIGURABLE_FIELDS and v is not None}
            if changes:
                self.update_agent(role, **changes)

    def set_preferred_model(self, model_id):
        """Fill in agents with no model; normalize the rest."""
        preferred = llm.normalize_model(model_id)
        for role, config in self._agents.items():
            model = config.model_id.strip() if config.model_id else ""
            self._agents[role] = replace(config, model_id=llm.normalize_model(model) if model else preferred)

    # ------------------------------------------------------------------
    # Quota health
    # ------------------------------------------------------------------

    def get_quota_health(self):
        return self.quota.snapshot()

    def cooldown_history(self, window_seconds=None):
        return self.quota.cooldown_history(window_seconds)

    def reset_quota_tracking(self):
        self.quota.reset()

    def ensure_not_cooling_down(self, health, run_id, context_mode):
        """Raise CooldownActiveError (and log the block) while the cool-down is active."""
        if not health.is_cooling_down:
            return
        seconds = health.seconds_remaining
        self.quota.record_cooldown_block(run_id, context_mode, seconds, health.recent_failure_count)
        logger.warning("Blocking run %s (%s) due to active usage cool-down: %ds remaining",
                       run_id, context_mode, seconds)
        raise CooldownActiveError(
            "Provider usage cool-down is active for the multi-agent pipeline. "
            f"Wait approximately {seconds} seconds before retrying. "
            f"Visit {DEFAULTS['usage_url']} to inspect your current usage and limits.",
            seconds,
        )

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    @staticmethod
    def _notify(on_progress, stage):
        if on_progress is None:
            return
        try:
            on_progress(stage)
        except Exception:
            logger.exception("Progress callback failed for %s", stage.id)

    async def _call_fallback(self, stage, messages, last_error):
        if not self.fallback.available_providers():
            raise QuotaExhaustedError(_quota_guidance_no_providers()) from last_error

        logger.warning("Primary quota exceeded for %s; trying fallback providers", stage.name)
        options = {
            "temperature": stage.agent_config.temperature,
            "max_tokens": DEFAULTS["fallback_max_tokens"],
        }
        try:
            result = await self.fallback.try_with_fallback(messages, options)
        except FallbackExhaustedError as exc:
            raise QuotaExhaustedError(_quota_guidance_fallback_failed(exc)) from exc
        logger.info("%s completed via fallback provider %s", stage.name, result.provider_name)
        return f"fallback:{result.provider_name}", result.response_text

    async def _call_model(self, stage, messages, degraded, priority):
        settings = {"temperature": stage.agent_config.temperature}
        last_error = None
        for candidate in candidate_models(stage.agent_config.model_id, degraded):
            logger.debug("Using model %s for %s", candidate, stage.name)
            operation = functools.partial(self.chat, messages, settings, candidate)
            try:
                output = await self.scheduler.enqueue(operation, priority)
            except Exception as exc:
                if not is_quota_error(exc):
                    raise
                logger.warning("Model %s hit quota limits during %s: %s", candidate, stage.name, error_text(exc))
                last_error = exc
                continue
            return candidate, output
        return await self._call_fallback(stage, messages, last_error)

    async def run_stage(self, stage: PipelineStage, stage_input, on_progress=None,
                        degraded=False, priority="normal"):
        """Run one stage to completion, updating it in place. Errors propagate."""
        stage.status = IN_PROGRESS
        stage.input = stage_input
        stage.error = None
        stage.start_time = datetime.now()
        stage.end_time = None
        stage.resolved_model = None
        self._notify(on_progress, stage)

        messages = [
            {"role": "system", "content": stage.agent_config.system_prompt},
            {"role": "user", "content": stage_input},
        ]
        try:
            model, output = await self._call_model(stage, messages, degraded, priority)
        except Exception as exc:
            stage.status = FAILED
            stage.error = error_text(exc)
            stage.end_time = datetime.now()
            logger.error("%s failed: %s", stage.name, stage.error)
            self._notify(on_progress, stage)
            raise

        stage.resolved_model = model
        stage.output = output
        stage.status = COMPLETED
        stage.end_time = datetime.now()
        logger.debug("%s completed with %s", stage.name, model)
        self._notify(on_progress, stage)

    @staticmethod
    def _transcript(stage, attempt=None):
        return StageTranscript(
            stage_id=stage.id,
            stage_name=stage.name,
            model=stage.model,
            input=truncate_transcript(stage.input),
            output=truncate_transcript(stage.output),
            attempt=attempt,
            started_at=stage.start_time.isoformat() if stage.start_time else None,
            ended_at=stage.end_time.isoformat() if stage.end_time else None,
        )

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def _build_report(self, stages, attempts, transcripts, snapshot):
        analysis, hardened, validation = stages[0].output, stages[3].output, stages[4].output
        return PipelineReport(
            analysis_summary=analysis,
            quality_attempts=list(attempts),
            production_engineer_output=hardened,
            final_validator_output=validation,
            stage_transcripts=list(transcripts),
            issue_snapshot=snapshot,
            missing_features=self.report_composer.missing_features(snapshot),
            improvement_recommendations=self.report_composer.recommendations(
                attempts, validation, analysis, snapshot,
            ),
        )

    async def run(self, request: RunRequest, on_progress=None) -> PipelineResult:
        """Run the whole pipeline for one request.

        Never raises for provider or stage failures: the result carries
        failure_type ("cooldown", "quota", "other") plus whatever stages,
        transcripts and report were produced before the failure. Invalid
        request fields (context mode, priority) raise ValueError.
        """
        if request.priority not in PRIORITIES:
            raise ValueError(f"Unknown priority '{request.priority}'. Expected one of: {', '.join(PRIORITIES)}")
        started = time.monotonic()
        run_id = f"run-{uuid.uuid4().hex[:12]}"
        stages = [PipelineStage(id=sid, name=name, agent_config=self._agents[role]) for sid, name, role in STAGES]

        health = self.quota.snapshot()
        try:
            self.ensure_not_cooling_down(health, run_id, request.context_mode)
        except CooldownActiveError as exc:
            return PipelineResult(
                success=False,
                final_code="",
                stages=stages,
                total_duration=time.monotonic() - started,
                quality_score=0,
                warnings=[str(exc)],
                failure_type="cooldown",
                error=str(exc),
            )

        degraded = health.degraded
        warnings = []
        max_characters = request.max_characters
        if degraded:
            max_characters = min(max_characters or DEFAULTS["default_context_chars"],
                                 DEFAULTS["degraded_context_chars"])
            warnings.append(
                f"Degraded mode: {health.recent_failure_count} recent quota failures. "
                "Running with a single quality attempt, cheaper models first and a reduced context budget."
            )
            logger.warning("Run %s starting in degraded mode (%d recent quota failures)",
                           run_id, health.recent_failure_count)

        context = assemble(request.context_mode, request.files, request.active_file, max_characters)
        snapshot = request.issue_snapshot
        if snapshot is None and self.issues is not None:
            snapshot = self.issues.snapshot()
        priority = request.priority
        logger.info("Run %s started (mode=%s, %d context chars)",
                    run_id, request.context_mode, len(context.aggregated_text))

        transcripts = []
        attempts = []
        try:
            # Stage 1: analyze
            await self.run_stage(
                stages[0],
                self.analyzer.compose_input(
                    user_prompt=request.user_prompt,
                    context=context,
                    issue_summary=self.report_composer.issue_summary(snapshot),
                ),
                on_progress, degraded, priority,
            )
            transcripts.append(self._transcript(stages[0]))

            # Stages 2 and 3: generate until the quality checker approves
            max_attempts = max_quality_attempts(request.max_quality_retries, health)
            generated = ""
            previous = None
            feedback = None
            approved = False
            for attempt in range(1, max_attempts + 1):
                await self.run_stage(
                    stages[1],
                    self.generator.compose_input(
                        analysis=stages[0].output,
                        user_prompt=request.user_prompt,
                        feedback=feedback,
                        previous_code=previous,
                    ),
                    on_progress, degraded, priority,
                )
                generated = stages[1].output
                transcripts.append(self._transcript(stages[1], attempt))

                await self.run_stage(
                    stages[2],
                    self.reviewer.compose_input(code=generated, user_prompt=request.user_prompt),
                    on_progress, degraded, priority,
                )
                transcripts.append(self._transcript(stages[2], attempt))
                feedback = stages[2].output
                approved = is_approved(feedback)

                attempts.append(QualityAttempt(
                    attempt=attempt,
                    status="approved" if approved else "rejected",
                    generator_model=stages[1].model,
                    quality_model=stages[2].model,
                    generated_code=generated,
                    reviewer_feedback=feedback,
                    previous_generated_code=previous,
                    diff=diff_lines(previous, generated) if previous is not None else None,
                ))
                if approved:
                    break

                stages[2].status = REJECTED
                stages[1].retry_count += 1
                logger.info("Quality check rejected (attempt %d/%d)", attempt, max_attempts)
                self._notify(on_progress, stages[2])
                if attempt < max_attempts:
                    stages[1].status = PENDING
                    self._notify(on_progress, stages[1])
                previous = generated

            if not approved:
                warnings.append(REJECTED_ALL_WARNING)
                warnings.append(feedback or NO_FEEDBACK_WARNING)
                stages[2].status = COMPLETED_WITH_WARNINGS
                self._notify(on_progress, stages[2])

            # Stage 4: harden
            await self.run_stage(
                stages[3],
                self.engineer.compose_input(code=generated, file_paths=list(context.file_map)),
                on_progress, degraded, priority,
            )
            transcripts.append(self._transcript(stages[3]))
            parsed = parse_output(stages[3].output, context.file_map)

            # Stage 5: validate
            await self.run_stage(
                stages[4],
                self.validator.compose_input(hardened_output=stages[3].output),
                on_progress, degraded, priority,
            )
            transcripts.append(self._transcript(stages[4]))
        except Exception as exc:
            failure_type = "other"
            if is_quota_error(exc):
                self.quota.record_failure()
                failure_type = "quota"
            failed = next((s.id for s in stages if s.status == FAILED), "unknown")
            logger.error("Run %s failed at %s (%s): %s", run_id, failed, failure_type, error_text(exc))
            return PipelineResult(
                success=False,
                final_code="",
                stages=stages,
                total_duration=time.monotonic() - started,
                quality_score=0,
                warnings=warnings,
                report=self._build_report(stages, attempts, transcripts, snapshot),
                failure_type=failure_type,
                error=error_text(exc),
            )

        score = extract_quality_score(stages[4].output)
        duration = time.monotonic() - started
        logger.info("Run %s completed in %.1fs (score %d, %d warnings)", run_id, duration, score, len(warnings))
        return PipelineResult(
            success=True,
            final_code=stages[3].output,
            stages=stages,
            total_duration=duration,
            quality_score=score,
            file_changes=parsed.changes,
            production_summary=parsed.summary,
            warnings=warnings,
            report=self._build_report(stages, attempts, transcripts, snapshot),
        )
