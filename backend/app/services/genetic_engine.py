from __future__ import annotations

from concurrent.futures import Executor, ProcessPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
import logging
import random
import threading
from time import monotonic, perf_counter
from typing import Callable, Protocol

from app.core.exceptions import GenerationCancelledError, GenerationTimeoutError, InfeasibleConstraintError
from app.schemas.generator import GenerationSettings
from app.services.chromosome import Chromosome, ChromosomeOperators
from app.services.constraints import ConstraintEvaluator, FitnessScore
from app.services.planning import PlanningGraph, check_capacity

logger = logging.getLogger(__name__)

MAX_MUTATION_RATE = 0.4
MUTATION_STEP = 0.05
DIVERSITY_INTERVAL = 5
EVAL_CACHE_LIMIT = 50_000


class EngineState(str, Enum):
    initializing = "initializing"
    evolving = "evolving"
    converged = "converged"
    max_generations_reached = "max_generations_reached"
    cancelled = "cancelled"
    failed = "failed"
    done = "done"


class ProgressSink(Protocol):
    def on_generation(self, index: int, max_generations: int, best_fitness: float) -> None:
        ...


class CallbackProgressSink:
    def __init__(self, callback: Callable[[int, int, float], None]) -> None:
        self.callback = callback

    def on_generation(self, index: int, max_generations: int, best_fitness: float) -> None:
        self.callback(index, max_generations, best_fitness)


class CancellationToken:
    """Cooperative stop signal, optionally carrying a wall-clock deadline."""

    def __init__(self, *, timeout_seconds: float | None = None, clock: Callable[[], float] = monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self.timeout_seconds = timeout_seconds
        self._deadline = clock() + timeout_seconds if timeout_seconds else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def should_stop(self) -> bool:
        return self.cancelled or self.timed_out

    def raise_if_stopped(self) -> None:
        if self.cancelled:
            raise GenerationCancelledError()
        if self.timed_out:
            raise GenerationTimeoutError(self.timeout_seconds)


@dataclass(frozen=True)
class GenerationStat:
    generation: int
    best_fitness: float
    avg_fitness: float
    worst_fitness: float
    hard_violations: int

    def as_dict(self) -> dict:
        return {
            "generation": self.generation,
            "best_fitness": self.best_fitness,
            "avg_fitness": self.avg_fitness,
            "worst_fitness": self.worst_fitness,
            "hard_violations": self.hard_violations,
        }


@dataclass
class GenerationOutcome:
    chromosome: Chromosome
    score: FitnessScore
    generations: int
    terminal_state: EngineState
    converged: bool
    timed_out: bool = False
    history: list[FitnessScore] = field(default_factory=list)
    stats: list[GenerationStat] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    runtime_ms: int = 0

    @property
    def best_fitness(self) -> float:
        return self.score.fitness


class GeneticEngine:
    def __init__(
        self,
        graph: PlanningGraph,
        settings: GenerationSettings,
        *,
        evaluator: ConstraintEvaluator | None = None,
        progress_sink: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.graph = graph
        self.settings = settings
        self.random = random.Random(settings.random_seed)
        self.evaluator = evaluator or ConstraintEvaluator(
            graph,
            settings.objective_weights,
            hard_penalty=settings.hard_penalty,
        )
        self.operators = ChromosomeOperators(graph, self.evaluator, self.random)
        self.progress_sink = progress_sink
        self.cancel_token = cancel_token or CancellationToken()
        self.eval_cache: dict[Chromosome, FitnessScore] = {}
        self.warnings: list[str] = []
        self.state = EngineState.initializing
        self.state_history: list[EngineState] = [self.state]

    def _transition(self, state: EngineState) -> None:
        logger.debug("Engine state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    def run(self) -> GenerationOutcome:
        start = perf_counter()
        logger.info(
            "Genetic run setup=%s units=%s population=%s generations=%s seed=%s",
            self.graph.academic_setup_id,
            len(self.graph.units),
            self.settings.population_size,
            self.settings.max_generations,
            self.settings.random_seed,
        )
        try:
            outcome = self._evolve()
        except (GenerationCancelledError, GenerationTimeoutError):
            self._transition(EngineState.cancelled)
            self._transition(EngineState.done)
            raise
        except Exception:
            self._transition(EngineState.failed)
            self._transition(EngineState.done)
            raise
        outcome.runtime_ms = int((perf_counter() - start) * 1000)
        self._transition(EngineState.done)
        logger.info(
            "Genetic run finished state=%s generations=%s fitness=%.2f hard=%s runtime_ms=%s",
            outcome.terminal_state.value,
            outcome.generations,
            outcome.score.fitness,
            outcome.score.hard_violations,
            outcome.runtime_ms,
        )
        return outcome

    def _evolve(self) -> GenerationOutcome:
        try:
            check_capacity(self.graph)
        except InfeasibleConstraintError as exc:
            logger.warning("%s", exc.message)
            self.warnings.append(exc.message)

        self.cancel_token.raise_if_stopped()
        population = self._build_initial_population()
        self._transition(EngineState.evolving)

        best: Chromosome | None = None
        best_score: FitnessScore | None = None
        history: list[FitnessScore] = []
        stats: list[GenerationStat] = []
        stagnant = 0
        generation = 0
        terminal: EngineState

        with self._evaluation_pool() as pool:
            while True:
                if generation >= self.settings.max_generations:
                    terminal = EngineState.max_generations_reached
                    break
                if self.cancel_token.should_stop():
                    if best_score is None:
                        self.cancel_token.raise_if_stopped()
                    terminal = EngineState.cancelled
                    break

                generation += 1
                scores = self._evaluate_population(population, pool)
                ranked = sorted(zip(population, scores), key=lambda item: item[1].rank_key)
                generation_best, generation_score = ranked[0]
                if generation_score.better_than(best_score):
                    best, best_score = generation_best, generation_score
                    stagnant = 0
                else:
                    stagnant += 1
                history.append(best_score)
                fitness_values = [score.fitness for score in scores]
                stats.append(
                    GenerationStat(
                        generation=generation,
                        best_fitness=best_score.fitness,
                        avg_fitness=sum(fitness_values) / len(fitness_values),
                        worst_fitness=min(fitness_values),
                        hard_violations=best_score.hard_violations,
                    )
                )

                if self.progress_sink is not None:
                    self.progress_sink.on_generation(generation, self.settings.max_generations, best_score.fitness)

                if self._reached_target(best_score, stagnant):
                    terminal = EngineState.converged
                    break

                population = self._next_generation(ranked, stagnant)

        timed_out = terminal is EngineState.cancelled and not self.cancel_token.cancelled
        if terminal is not EngineState.cancelled and best_score.hard_violations > 0:
            best, best_score = self._polish(best, best_score)
        self._transition(terminal)

        return GenerationOutcome(
            chromosome=best,
            score=best_score,
            generations=generation,
            terminal_state=terminal,
            converged=self._is_converged(best_score, terminal),
            timed_out=timed_out,
            history=history,
            stats=stats,
            warnings=list(self.warnings),
        )

    def _evaluation_pool(self):
        workers = self.settings.evaluation_workers
        if workers <= 1:
            return nullcontext(None)
        return ProcessPoolExecutor(max_workers=workers)

    def _evaluate_population(self, population: list[Chromosome], pool: Executor | None) -> list[FitnessScore]:
        pending = [item for item in dict.fromkeys(population) if item not in self.eval_cache]
        if pending:
            if len(self.eval_cache) + len(pending) > EVAL_CACHE_LIMIT:
                self.eval_cache.clear()
            if pool is not None and len(pending) > 1:
                results = list(pool.map(self.evaluator.evaluate, pending))
            else:
                results = [self.evaluator.evaluate(item) for item in pending]
            self.eval_cache.update(zip(pending, results))
        return [self.eval_cache[item] for item in population]

    def _score(self, chromosome: Chromosome) -> FitnessScore:
        cached = self.eval_cache.get(chromosome)
        if cached is None:
            cached = self.evaluator.evaluate(chromosome)
            self.eval_cache[chromosome] = cached
        return cached

    def _reached_target(self, best_score: FitnessScore, stagnant: int) -> bool:
        # A target is only met by a timetable without hard violations.
        if best_score.hard_violations > 0:
            return False
        if self.settings.has_target:
            return best_score.fitness >= self.settings.target_fitness_min
        return best_score.soft_penalty == 0 or stagnant >= self.settings.stagnation_limit

    def _is_converged(self, best_score: FitnessScore, terminal: EngineState) -> bool:
        if terminal is EngineState.cancelled or best_score.hard_violations > 0:
            return False
        if self.settings.has_target:
            return best_score.fitness >= self.settings.target_fitness_min
        return True

    def _adaptive_mutation_rate(self, stagnant_generations: int) -> float:
        base = self.settings.mutation_rate
        if stagnant_generations <= 0:
            return base
        return min(max(base, MAX_MUTATION_RATE), base + MUTATION_STEP * stagnant_generations)

    def _select(self, ranked: list[tuple[Chromosome, FitnessScore]]) -> Chromosome:
        size = min(self.settings.tournament_size, len(ranked))
        contenders = self.random.sample(range(len(ranked)), size)
        # ranked is sorted best first, so the lowest index wins.
        return ranked[min(contenders)][0]

    def _build_initial_population(self) -> list[Chromosome]:
        population: list[Chromosome] = []
        seen: set[Chromosome] = set()

        def add_unique(candidate: Chromosome) -> None:
            if candidate in seen:
                return
            seen.add(candidate)
            population.append(candidate)

        # 1. Deterministic priority-order seed.
        add_unique(self.operators.repair(self.operators.seed(randomized=False)))

        # 2. Randomized constructive seeds for diversity.
        attempts = 0
        size = self.settings.population_size
        while len(population) < size and attempts < size * 2:
            attempts += 1
            add_unique(self.operators.repair(self.operators.seed(randomized=True), max_passes=1))

        # Small search spaces saturate quickly; duplicates keep the size constant.
        while len(population) < size:
            population.append(self.random.choice(population))
        return population[:size]

    def _next_generation(self, ranked: list[tuple[Chromosome, FitnessScore]], stagnant: int) -> list[Chromosome]:
        size = self.settings.population_size
        mutation_rate = self._adaptive_mutation_rate(stagnant)
        next_population = [chromosome for chromosome, _ in ranked[: self.settings.elite_count]]

        if stagnant and stagnant % DIVERSITY_INTERVAL == 0:
            fresh_count = max(1, size // 4)
            for _ in range(fresh_count):
                if len(next_population) >= size:
                    break
                next_population.append(self.operators.repair(self.operators.seed(randomized=True), max_passes=1))
            logger.debug("Injected %s fresh chromosomes after %s stagnant generations", fresh_count, stagnant)

        while len(next_population) < size:
            parent_a = self._select(ranked)
            parent_b = self._select(ranked)
            if self.random.random() < self.settings.crossover_rate:
                child = self.operators.crossover(parent_a, parent_b)
            else:
                child = parent_a
            child = self.operators.mutate(child, mutation_rate)
            child = self.operators.repair(child, max_passes=1)
            next_population.append(child)
        return next_population

    def _polish(self, best: Chromosome, best_score: FitnessScore) -> tuple[Chromosome, FitnessScore]:
        repaired = self.operators.repair(best, max_passes=4)
        repaired_score = self._score(repaired)
        if repaired_score.better_than(best_score):
            return repaired, repaired_score
        return best, best_score
