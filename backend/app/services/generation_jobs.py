from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Protocol

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.exceptions import AppError, ConfigurationError, GenerationCancelledError, GenerationTimeoutError
from app.schemas.generator import GenerationSettings, JobRequest, JobStatus, ProgressRecord
from app.schemas.setup import AcademicSetupGraph
from app.services.chromosome import Chromosome
from app.services.constraints import FitnessScore
from app.services.genetic_engine import CancellationToken, GenerationOutcome, GeneticEngine
from app.services.planning import PlanningGraph, build_planning_graph
from app.services.progress_store import ProgressStore

logger = logging.getLogger(__name__)

# Generation progress is scaled into this band; setup and persistence own the rest.
PROGRESS_START = 5.0
PROGRESS_CEILING = 95.0


class AcademicSetupSource(Protocol):
    def load(self, academic_setup_id: str) -> AcademicSetupGraph:
        ...


class ScheduleWriter(Protocol):
    def persist(
        self,
        chromosome: Chromosome,
        academic_setup_id: str,
        created_by: str | None,
        *,
        graph: PlanningGraph,
        score: FitnessScore,
        generations: int = 0,
        converged: bool = False,
        run_metadata: dict | None = None,
    ) -> str:
        ...


@dataclass
class JobResult:
    job_key: str
    status: JobStatus
    message: str
    schedule_id: str | None = None
    outcome: GenerationOutcome | None = None


def default_generation_settings(**overrides) -> GenerationSettings:
    settings = get_settings()
    values = {
        "population_size": settings.generation_population_size,
        "max_generations": settings.generation_max_generations,
        "mutation_rate": settings.generation_mutation_rate,
        "included_day_groups": list(settings.generation_included_day_groups),
        "hard_penalty": settings.generation_hard_penalty,
        "evaluation_workers": settings.generation_evaluation_workers,
    }
    values.update(overrides)
    try:
        return GenerationSettings(**values)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) or "settings" for error in exc.errors())
        raise ConfigurationError(f"Invalid generation settings: {fields}") from exc


class JobProgressSink:
    """Relays generation progress into the progress store."""

    def __init__(self, store: ProgressStore, job_key: str, *, ttl_seconds: int | None = None) -> None:
        self.store = store
        self.job_key = job_key
        self.ttl_seconds = ttl_seconds

    def publish(self, progress: float, message: str, status: JobStatus = JobStatus.running, **extra) -> None:
        record = ProgressRecord(progress=round(progress, 1), message=message, status=status, **extra)
        self.store.put(self.job_key, record, self.ttl_seconds)

    def on_generation(self, index: int, max_generations: int, best_fitness: float) -> None:
        span = PROGRESS_CEILING - PROGRESS_START
        progress = min(PROGRESS_CEILING, PROGRESS_START + span * index / max(1, max_generations))
        self.publish(progress, f"Generation {index}/{max_generations} - Best Fitness: {best_fitness:.2f}")


def _run_metadata(request: JobRequest, outcome: GenerationOutcome) -> dict:
    settings = request.settings
    return {
        "job_key": request.job_key,
        "population_size": settings.population_size,
        "max_generations": settings.max_generations,
        "mutation_rate": settings.mutation_rate,
        "included_day_groups": list(settings.included_day_groups),
        "random_seed": settings.random_seed,
        "terminal_state": outcome.terminal_state.value,
        "timed_out": outcome.timed_out,
        "runtime_ms": outcome.runtime_ms,
        "warnings": list(outcome.warnings),
        # Last ten generations are enough to plot convergence.
        "generation_stats": [stat.as_dict() for stat in outcome.stats[-10:]],
    }


def run_generation_job(
    request: JobRequest,
    *,
    setup_source: AcademicSetupSource,
    schedule_writer: ScheduleWriter,
    progress_store: ProgressStore,
    cancel_token: CancellationToken | None = None,
    ttl_seconds: int | None = None,
) -> JobResult:
    """Run one generation job end to end.

    Every outcome, including unexpected errors, ends as a terminal progress
    record; nothing propagates to the caller.
    """
    token = cancel_token or CancellationToken(timeout_seconds=get_settings().job_timeout_seconds)
    sink = JobProgressSink(progress_store, request.job_key, ttl_seconds=ttl_seconds)

    try:
        sink.publish(0, "Initializing...")
        setup = setup_source.load(request.academic_setup_id)
        graph = build_planning_graph(setup, included_day_groups=request.settings.included_day_groups)

        sink.publish(PROGRESS_START, "Starting genetic algorithm...")
        engine = GeneticEngine(graph, request.settings, progress_sink=sink, cancel_token=token)
        outcome = engine.run()

        schedule_id = schedule_writer.persist(
            outcome.chromosome,
            request.academic_setup_id,
            request.user_id,
            graph=graph,
            score=outcome.score,
            generations=outcome.generations,
            converged=outcome.converged,
            run_metadata=_run_metadata(request, outcome),
        )
    except GenerationCancelledError as exc:
        logger.info("Generation job %s cancelled before a result was available", request.job_key)
        sink.publish(0, exc.message, JobStatus.cancelled, converged=False)
        return JobResult(job_key=request.job_key, status=JobStatus.cancelled, message=exc.message)
    except GenerationTimeoutError as exc:
        logger.warning("Generation job %s timed out before a result was available", request.job_key)
        sink.publish(0, exc.message, JobStatus.failed, converged=False)
        return JobResult(job_key=request.job_key, status=JobStatus.failed, message=exc.message)
    except AppError as exc:
        logger.warning("Generation job %s failed: %s", request.job_key, exc.message)
        sink.publish(0, exc.message, JobStatus.failed)
        return JobResult(job_key=request.job_key, status=JobStatus.failed, message=exc.message)
    except Exception as exc:
        logger.exception("Generation job %s failed", request.job_key)
        message = f"Schedule generation failed: {exc}"
        sink.publish(0, message, JobStatus.failed)
        return JobResult(job_key=request.job_key, status=JobStatus.failed, message=message)

    score = outcome.score
    if outcome.timed_out:
        status = JobStatus.completed
        message = f"Timed out after {outcome.generations} generation(s); best-so-far saved"
    elif token.cancelled:
        status = JobStatus.cancelled
        message = f"Cancelled after {outcome.generations} generation(s); best-so-far saved"
    elif outcome.converged:
        status = JobStatus.completed
        message = "Complete"
    else:
        status = JobStatus.completed
        message = f"Completed without converging: {score.hard_violations} hard violation(s) remain"
    for warning in outcome.warnings:
        message = f"{message}. {warning}"

    sink.publish(
        100,
        message,
        status,
        schedule_id=schedule_id,
        converged=outcome.converged,
        hard_violations=score.hard_violations,
    )
    return JobResult(
        job_key=request.job_key,
        status=status,
        message=message,
        schedule_id=schedule_id,
        outcome=outcome,
    )


@dataclass
class JobHandle:
    job_key: str
    future: Future
    cancel_token: CancellationToken

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float | None = None) -> JobResult:
        return self.future.result(timeout=timeout)


class GenerationJobRunner:
    """Submits generation jobs to a background thread pool."""

    def __init__(
        self,
        *,
        setup_source: AcademicSetupSource,
        schedule_writer: ScheduleWriter,
        progress_store: ProgressStore,
        max_workers: int | None = None,
        timeout_seconds: float | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self.setup_source = setup_source
        self.schedule_writer = schedule_writer
        self.progress_store = progress_store
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.job_timeout_seconds
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.progress_ttl_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.job_max_workers,
            thread_name_prefix="schedule-generation",
        )

    def _run(self, request: JobRequest, token: CancellationToken) -> JobResult:
        return run_generation_job(
            request,
            setup_source=self.setup_source,
            schedule_writer=self.schedule_writer,
            progress_store=self.progress_store,
            cancel_token=token,
            ttl_seconds=self.ttl_seconds,
        )

    def submit(self, request: JobRequest) -> JobHandle:
        self.progress_store.put(
            request.job_key,
            ProgressRecord(progress=0, message="Queued for processing...", status=JobStatus.pending),
            self.ttl_seconds,
        )
        token = CancellationToken(timeout_seconds=self.timeout_seconds)
        future = self._executor.submit(self._run, request, token)
        logger.info("Queued generation job %s for setup %s", request.job_key, request.academic_setup_id)
        return JobHandle(job_key=request.job_key, future=future, cancel_token=token)

    def run_sync(self, request: JobRequest, cancel_token: CancellationToken | None = None) -> JobResult:
        token = cancel_token or CancellationToken(timeout_seconds=self.timeout_seconds)
        return self._run(request, token)

    def progress(self, job_key: str) -> ProgressRecord | None:
        """Latest record for a job, or None once it expired or was never queued."""
        return self.progress_store.get(job_key)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
