#!/usr/bin/env python3
"""HTTP API for the multi-agent pipeline: job submission plus quota and provider admin.

One background asyncio loop owns the shared scheduler, quota tracker and
orchestrator. Flask handlers hand work to that loop and never touch those
objects from the request thread.
"""

import asyncio
import logging
import os
import threading
import time
import uuid
from dataclasses import asdict

from flask import Flask, jsonify, request

from core.errors import CooldownActiveError
from core.issues import ISSUE_SOURCES, IssueRegistry, analysis_from_dict
from core.orchestrator import Orchestrator
from core.quota import QuotaTracker
from core.scheduler import RequestScheduler
from core.state import CONTEXT_MODES, PRIORITIES, ContextFile, RunRequest
from utils.fallback import FallbackSelector

logger = logging.getLogger(__name__)

app = Flask(__name__)
scheduler = RequestScheduler()
quota = QuotaTracker()
issues = IssueRegistry()
fallback = FallbackSelector()
orchestrator = Orchestrator(scheduler, quota, fallback=fallback, issues=issues)

# Pipeline jobs keyed by job_id
_jobs = {}
_jobs_lock = threading.Lock()
_MAX_JOBS = 50  # prevent unbounded memory growth
_JOB_TTL = 3600  # expire jobs after 1 hour
_LOOP_CALL_TIMEOUT = 10

_loop = None
_loop_lock = threading.Lock()


def _get_loop():
    """Start (once) and return the background event loop."""
    global _loop
    with _loop_lock:
        if _loop is None:
            _loop = asyncio.new_event_loop()
            thread = threading.Thread(target=_loop.run_forever, name="pipeline-loop", daemon=True)
            thread.start()
    return _loop


def _call_on_loop(fn, *args):
    """Run a plain callable on the loop thread and return its result."""
    async def invoke():
        return fn(*args)
    return asyncio.run_coroutine_threadsafe(invoke(), _get_loop()).result(timeout=_LOOP_CALL_TIMEOUT)


def _cleanup_jobs():
    """Remove expired jobs. Called under _jobs_lock."""
    now = time.time()
    expired = [jid for jid, job in _jobs.items() if now - job["created"] > _JOB_TTL]
    for jid in expired:
        del _jobs[jid]
    # If still over limit, remove oldest
    if len(_jobs) > _MAX_JOBS:
        by_age = sorted(_jobs.items(), key=lambda x: x[1]["created"])
        for jid, _ in by_age[:len(_jobs) - _MAX_JOBS]:
            del _jobs[jid]


def _get_job(job_id):
    with _jobs_lock:
        job = _jobs.get(job_id)
        if job and time.time() - job["created"] > _JOB_TTL:
            _jobs.pop(job_id, None)
            return None
        return job


def _stage_to_dict(stage):
    return {
        "id": stage.id,
        "name": stage.name,
        "status": stage.status,
        "model": stage.model,
        "retry_count": stage.retry_count,
        "error": stage.error,
        "started_at": stage.start_time.isoformat() if stage.start_time else None,
        "ended_at": stage.end_time.isoformat() if stage.end_time else None,
    }


def _result_to_dict(result):
    return {
        "success": result.success,
        "failure_type": result.failure_type,
        "error": result.error,
        "final_code": result.final_code,
        "quality_score": result.quality_score,
        "total_duration": result.total_duration,
        "warnings": result.warnings,
        "production_summary": result.production_summary,
        "stages": [_stage_to_dict(s) for s in result.stages],
        "file_changes": [asdict(c) for c in result.file_changes],
        "report": asdict(result.report) if result.report else None,
    }


async def _run_job(job_id, run_request):
    def on_progress(stage):
        with _jobs_lock:
            job = _jobs.get(job_id)
            if job is not None:
                job["stages"][stage.id] = _stage_to_dict(stage)

    try:
        result = await orchestrator.run(run_request, on_progress=on_progress)
    except Exception:
        logger.exception("Job %s crashed", job_id)
        with _jobs_lock:
            if job_id in _jobs:
                _jobs[job_id]["status"] = "failed"
        raise

    with _jobs_lock:
        job = _jobs.get(job_id)
        if job is not None:
            job["status"] = "completed" if result.success else "failed"
            job["result"] = _result_to_dict(result)
    return result


def _parse_context_file(data):
    if not isinstance(data, dict) or not data.get("path"):
        return None
    return ContextFile(path=data["path"], content=data.get("content", ""))


def _parse_run_request(data):
    """Build a RunRequest from JSON, or return an error message."""
    prompt = (data.get("prompt") or "").strip()
    if not prompt:
        return None, "Missing prompt"
    mode = data.get("context_mode", "prompt_only")
    if mode not in CONTEXT_MODES:
        return None, f"Invalid context_mode. Expected one of: {', '.join(CONTEXT_MODES)}"
    priority = data.get("priority", "normal")
    if priority not in PRIORITIES:
        return None, f"Invalid priority. Expected one of: {', '.join(PRIORITIES)}"
    for field in ("max_characters", "max_quality_retries"):
        value = data.get(field)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            return None, f"Invalid {field}. Expected an integer"

    files = [f for f in (_parse_context_file(item) for item in data.get("files") or []) if f]
    return RunRequest(
        user_prompt=prompt,
        context_mode=mode,
        files=files,
        active_file=_parse_context_file(data.get("active_file")),
        max_characters=data.get("max_characters"),
        max_quality_retries=data.get("max_quality_retries"),
        priority=priority,
    ), None


def _cooldown_block(job_id, context_mode):
    try:
        orchestrator.ensure_not_cooling_down(orchestrator.get_quota_health(), job_id, context_mode)
    except CooldownActiveError as exc:
        return exc
    return None


@app.route("/api/run", methods=["POST"])
def api_run():
    """Queue a pipeline run; poll /api/status/<job_id> for progress."""
    data = request.get_json(silent=True) or {}
    run_request, error = _parse_run_request(data)
    if error:
        return jsonify({"error": error}), 400

    job_id = str(uuid.uuid4())[:8]
    blocked = _call_on_loop(_cooldown_block, job_id, run_request.context_mode)
    if blocked is not None:
        return jsonify({"error": str(blocked), "seconds_remaining": blocked.seconds_remaining}), 409

    with _jobs_lock:
        _cleanup_jobs()
        _jobs[job_id] = {
            "status": "running",
            "stages": {},
            "result": None,
            "created": time.time(),
        }
    future = asyncio.run_coroutine_threadsafe(_run_job(job_id, run_request), _get_loop())
    with _jobs_lock:
        _jobs[job_id]["future"] = future
    return jsonify({"job_id": job_id, "status": "running"}), 202


@app.route("/api/status/<job_id>")
def api_status(job_id):
    job = _get_job(job_id)
    if not job:
        return jsonify({"error": "Job not found"}), 404
    with _jobs_lock:
        return jsonify({
            "job_id": job_id,
            "status": job["status"],
            "stages": list(job["stages"].values()),
            "result": job["result"],
        })


@app.route("/api/quota")
def api_quota():
    health = _call_on_loop(orchestrator.get_quota_health)
    data = asdict(health)
    data["seconds_remaining"] = health.seconds_remaining
    return jsonify(data)


@app.route("/api/cooldowns")
def api_cooldowns():
    window = request.args.get("window", type=float)
    events = _call_on_loop(orchestrator.cooldown_history, window)
    return jsonify([asdict(e) for e in events])


@app.route("/api/quota/reset", methods=["POST"])
def api_quota_reset():
    _call_on_loop(orchestrator.reset_quota_tracking)
    return jsonify({"status": "reset"})


@app.route("/api/scheduler")
def api_scheduler():
    def read():
        return scheduler.get_metrics(), scheduler.estimated_wait_time()

    metrics, wait = _call_on_loop(read)
    data = asdict(metrics)
    data["estimated_wait_time"] = wait
    return jsonify(data)


@app.route("/api/agents")
def api_agents():
    agents = _call_on_loop(orchestrator.get_all_agents)
    return jsonify([
        {
            "key": key,
            "name": config.name,
            "role": config.role,
            "model_id": config.model_id,
            "temperature": config.temperature,
            "max_retries": config.max_retries,
        }
        for key, config in agents.items()
    ])


@app.route("/api/providers")
def api_providers():
    available = {p.name for p in fallback.available_providers()}
    return jsonify([
        {
            "name": p.name,
            "model": p.model,
            "priority": p.priority,
            "free_limit": p.free_limit,
            "key_url": p.key_url,
            "configured": p.name in available,
        }
        for p in fallback.providers
    ])


@app.route("/api/providers/key", methods=["POST"])
def api_provider_key():
    data = request.get_json(silent=True) or {}
    provider = data.get("provider")
    if not provider:
        return jsonify({"error": "Missing provider"}), 400
    try:
        fallback.set_api_key(provider, data.get("key", ""))
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"provider": provider, "configured": bool(data.get("key"))})


@app.route("/api/issues", methods=["POST"])
def api_issues():
    """Publish (or clear, when analysis is null) a ProjectAnalysis for one source."""
    data = request.get_json(silent=True) or {}
    source = data.get("source", "project-analyzer")
    if source not in ISSUE_SOURCES:
        return jsonify({"error": f"Invalid source. Expected one of: {', '.join(ISSUE_SOURCES)}"}), 400

    payload = data.get("analysis")
    if payload is None:
        _call_on_loop(issues.clear, source)
        return jsonify({"source": source, "cleared": True})
    if not isinstance(payload, dict):
        return jsonify({"error": "analysis must be an object"}), 400

    try:
        analysis = analysis_from_dict(payload)
    except (TypeError, ValueError) as exc:
        return jsonify({"error": f"Invalid analysis: {exc}"}), 400
    _call_on_loop(issues.set_analysis, source, analysis)
    return jsonify({"source": source, "issues_found": analysis.issues_found})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", 5001))
    print(f"Pipeline API running at http://localhost:{port}")
    app.run(debug=False, port=port)
