"""
Generation of designs of non-implausible points for the next wave of history matching.

A design is grown over a number of rounds. Each round proposes a batch of candidate
points, assesses them with an accept measure and adds the accepted points to the
design. The first batch is a space-filling (maximin Latin hypercube) sample of the
current region; later batches concentrate on the region around the points found so
far, while still devoting a fraction of each batch to exploration. The batch size
adapts to the acceptance rate observed so far, and generation stops once enough
points have been found or the round/candidate budget runs out.


[`DesignGenerator`][hmatch.core.designers.DesignGenerator]
---------------------------------------------------------------------------------------
[`generate`][hmatch.core.designers.DesignGenerator.generate]
Generate a design of accepted points.

[`generate_new_design`][hmatch.core.designers.generate_new_design]
Module-level shortcut for `DesignGenerator.generate`.

[`space_removed`][hmatch.core.designers.space_removed]
Estimate the fraction of a range rejected by an accept measure.

[`maximin_lhs`][hmatch.core.designers.maximin_lhs]
Space-filling Latin hypercube samples in the unit hypercube.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import math
from collections.abc import Mapping, Sequence
from numbers import Real
from typing import Any, Optional, Union

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.distance import cdist, pdist
from scipy.stats import qmc

import hmatch.utilities.validation as validation
from hmatch.core.implausibility import (
    ImplausibilityEvaluator,
    check_schema,
    validate_reduction_args,
)
from hmatch.core.measures import (
    AcceptMeasure,
    ConstrainedMeasure,
    DefaultMeasure,
    get_measure,
    outcome_to_mask,
)
from hmatch.core.modelling import (
    AbstractEmulator,
    ConfigurationError,
    EmulatorBank,
    Point,
    Range,
    Target,
)
from hmatch.utilities.optimisation import minimise

logger = logging.getLogger(__name__)

RandomSource = Union[int, np.random.Generator, None]

# Largest sample for which several Latin hypercubes are compared by minimum distance
_MAXIMIN_SIZE_LIMIT = 1000

# Settings of the differential evolution used to seed rounds by optimisation
_OPTIMISER_POPSIZE = 15
_OPTIMISER_MAXITER = 50


class ResampleStrategy(enum.Enum):
    """How candidates are proposed once some non-implausible points are known.

    LHS
        Space-filling samples over the whole current region in every round.
    IMPORTANCE
        Gaussian perturbations of the known points, with a bandwidth determined by
        their spread.
    LINE
        Points on line segments through pairs of known points, extended beyond each
        end by a fraction of the segment.
    OPTIMISE
        As IMPORTANCE, but if a round finds no acceptable points, seed the next round
        by minimising the aggregated implausibility over the region. The points
        assessed by the optimiser count towards the candidate budget; if too little
        of it is left, relaxed seeding is used instead.
    """

    LHS = "lhs"
    IMPORTANCE = "importance"
    LINE = "line"
    OPTIMISE = "optimise"


def _check_positive_int(name: str, value: Any) -> None:
    validation.check_int(
        value,
        ConfigurationError(
            f"Expected '{name}' to be an integer, but received {type(value)}."
        ),
    )
    if value < 1:
        raise ConfigurationError(
            f"Expected '{name}' to be a positive integer, but received {value}."
        )


def _check_fraction(name: str, value: Any, allow_zero: bool = True) -> None:
    validation.check_real(
        value,
        ConfigurationError(
            f"Expected '{name}' to be a real number, but received {type(value)}."
        ),
    )
    if not (0 <= value <= 1) or (value == 0 and not allow_zero):
        raise ConfigurationError(
            f"Expected '{name}' to lie in the interval {'[' if allow_zero else '('}0, 1], "
            f"but received {value}."
        )


def _check_non_negative(name: str, value: Any) -> None:
    validation.check_real(
        value,
        ConfigurationError(
            f"Expected '{name}' to be a real number, but received {type(value)}."
        ),
    )
    if not math.isfinite(value) or value < 0:
        raise ConfigurationError(
            f"Expected '{name}' to be a finite non-negative number, but received {value}."
        )


@dataclasses.dataclass(frozen=True)
class GenerationOptions:
    """Options controlling the generation of a design.

    Parameters
    ----------
    accept_measure : str or AcceptMeasure, optional
        (Default: ``"default"``) The accept measure, either as a registered name (see
        ``hmatch.core.measures.register_measure``) or an `AcceptMeasure` instance.
    measure_options : Mapping[str, Any], optional
        (Default: empty) Extra keyword options passed to every call of the accept
        measure.
    min_rounds : int, optional
        (Default: 1) The minimum number of rounds to run. Rounds after the target
        count has been reached propose further points around the design, which is
        then thinned back to the target count, improving coverage.
    max_rounds : int, optional
        (Default: 20) The maximum number of rounds to run.
    max_candidates : int, optional
        (Default: 100000) The maximum total number of candidate points to assess,
        including those assessed while seeding by optimisation.
    resample_strategy : ResampleStrategy or str, optional
        (Default: ``ResampleStrategy.IMPORTANCE``) How candidates are proposed once
        some non-implausible points are known.
    points_factor : int, optional
        (Default: 10) The first batch has ``points_factor`` times as many candidates
        as points requested.
    max_batch_size : int, optional
        (Default: 10000) The largest batch of candidates proposed in one round.
    explore_fraction : float, optional
        (Default: 0.1) The fraction of each resampling batch drawn space-filling
        across the whole region, rather than around known points.
    importance_scale : float, optional
        (Default: 1.0) Multiplier for the bandwidth of importance resampling.
    line_gap : float, optional
        (Default: 0.1) The fraction of a segment's length by which line resampling
        extends beyond each end of the segment.
    buffer : float, optional
        (Default: 0.05) When a plausible set from a previous wave is supplied, the
        proposal region is the box around it widened by this fraction of the range.
    relax_on_failure : bool, optional
        (Default: True) Whether, after a round in which nothing has been accepted, the
        lowest-scoring candidates are used to seed the next round. When enabled, each
        round calls the accept measure with ``return_scores=True``, and the scores
        from that single call are used. Measures that return booleans regardless
        cannot be relaxed.
    relaxed_fraction : float, optional
        (Default: 0.1) The fraction of a failed round's candidates used as seeds when
        relaxing.
    max_workers : int, optional
        (Default: None) Thread pool size for emulator predictions. Applies to the
        default measure selected by name, and to a `ConstrainedMeasure` created
        without an explicit base; combining it with any other measure is a
        `ConfigurationError`.
    seed : int, optional
        (Default: None) Seed for the random number generator, used when no generator
        is passed to `DesignGenerator.generate`.
    """

    accept_measure: Union[str, AcceptMeasure] = "default"
    measure_options: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    min_rounds: int = 1
    max_rounds: int = 20
    max_candidates: int = 100_000
    resample_strategy: Union[ResampleStrategy, str] = ResampleStrategy.IMPORTANCE
    points_factor: int = 10
    max_batch_size: int = 10_000
    explore_fraction: float = 0.1
    importance_scale: float = 1.0
    line_gap: float = 0.1
    buffer: float = 0.05
    relax_on_failure: bool = True
    relaxed_fraction: float = 0.1
    max_workers: Optional[int] = None
    seed: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.accept_measure, (str, AcceptMeasure)):
            raise ConfigurationError(
                "Expected 'accept_measure' to be a registered name or an AcceptMeasure, "
                f"but received {type(self.accept_measure)}. Wrap plain functions in "
                "FunctionMeasure."
            )

        if not isinstance(self.measure_options, Mapping):
            raise ConfigurationError(
                "Expected 'measure_options' to be a mapping, but received "
                f"{type(self.measure_options)}."
            )

        object.__setattr__(self, "measure_options", dict(self.measure_options))

        try:
            strategy = ResampleStrategy(self.resample_strategy)
        except ValueError:
            raise ConfigurationError(
                f"Unknown resample strategy {self.resample_strategy!r}; expected one of "
                f"{', '.join(s.value for s in ResampleStrategy)}."
            ) from None

        object.__setattr__(self, "resample_strategy", strategy)

        for name in ("min_rounds", "max_rounds", "max_candidates", "points_factor", "max_batch_size"):
            _check_positive_int(name, getattr(self, name))

        if self.min_rounds > self.max_rounds:
            raise ConfigurationError(
                f"Expected 'min_rounds' ({self.min_rounds}) to be no greater than "
                f"'max_rounds' ({self.max_rounds})."
            )

        _check_fraction("explore_fraction", self.explore_fraction)
        _check_fraction("relaxed_fraction", self.relaxed_fraction, allow_zero=False)
        _check_non_negative("importance_scale", self.importance_scale)
        _check_non_negative("line_gap", self.line_gap)
        _check_non_negative("buffer", self.buffer)

        if self.max_workers is not None:
            _check_positive_int("max_workers", self.max_workers)

        if self.seed is not None:
            validation.check_int(
                self.seed,
                ConfigurationError(
                    f"Expected 'seed' to be None or an integer, but received {type(self.seed)}."
                ),
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> GenerationOptions:
        """Create options from a mapping of option names to values.

        Raises
        ------
        ConfigurationError
            If the mapping contains an unrecognised option name, or an invalid value.
        """

        return cls().updated(mapping)

    def updated(self, mapping: Mapping[str, Any]) -> GenerationOptions:
        """Return a copy of these options with the values in `mapping` replaced.

        Raises
        ------
        ConfigurationError
            If the mapping contains an unrecognised option name, or an invalid value.
        """

        known = {field.name for field in dataclasses.fields(self)}
        if unknown := sorted(set(mapping) - known):
            raise ConfigurationError(
                f"Unrecognised generation options: {', '.join(map(repr, unknown))}."
            )

        return dataclasses.replace(self, **mapping)


@dataclasses.dataclass(frozen=True)
class GeneratedDesign:
    """The outcome of generating a design.

    Parameters
    ----------
    points : tuple[Point, ...]
        The accepted points making up the design.
    target_count : int
        The number of points that was requested.
    rounds : int
        The number of rounds run.
    candidates_evaluated : int
        The total number of candidate points assessed by the accept measure. Each
        candidate is assessed once.
    accepted_total : int
        The total number of candidates accepted, before any thinning to the target
        count.
    budget_exhausted : bool
        Whether generation stopped because the round or candidate budget ran out
        before the target count was reached.
    """

    points: tuple[Point, ...]
    target_count: int
    rounds: int
    candidates_evaluated: int
    accepted_total: int
    budget_exhausted: bool

    @property
    def complete(self) -> bool:
        """Whether the design contains the requested number of points."""
        return len(self.points) == self.target_count

    @property
    def acceptance_rate(self) -> float:
        """The proportion of assessed candidates that were accepted."""
        if self.candidates_evaluated == 0:
            return 0.0

        return self.accepted_total / self.candidates_evaluated

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)


def maximin_lhs(dim: int, size: int, rng: np.random.Generator, tries: int = 5) -> NDArray:
    """Draw a Latin hypercube sample in the unit hypercube, choosing among `tries`
    candidate samples the one with the largest minimum distance between points.

    For samples larger than a thousand points only a single Latin hypercube is drawn.
    """

    if size == 0:
        return np.empty((0, dim), dtype=float)

    sampler = qmc.LatinHypercube(d=dim, rng=rng)
    if size < 2 or size > _MAXIMIN_SIZE_LIMIT:
        return sampler.random(n=size)

    best, best_dist = None, -1.0
    for _ in range(tries):
        sample = sampler.random(n=size)
        dist = float(pdist(sample).min())
        if dist > best_dist:
            best, best_dist = sample, dist

    return best


def select_space_filling(array: NDArray, k: int, scale: NDArray, rng: np.random.Generator) -> NDArray:
    """Choose `k` rows of `array` by greedy farthest-point selection, returning their
    indices in order of selection. Distances are computed after dividing each column
    by `scale`."""

    scaled = array / scale
    chosen = [int(rng.integers(len(scaled)))]
    min_dist = cdist(scaled, scaled[chosen]).reshape(-1)
    while len(chosen) < k:
        nxt = int(np.argmax(min_dist))
        chosen.append(nxt)
        min_dist = np.minimum(min_dist, cdist(scaled, scaled[[nxt]]).reshape(-1))

    return np.array(chosen, dtype=int)


class DesignGenerator:
    """Generates designs of points accepted by an accept measure.

    Parameters
    ----------
    domain : Range
        The range of parameter space in which points are generated. Generated points
        always lie within it.
    options : GenerationOptions or Mapping[str, Any], optional
        (Default: None) Default options for generation. Mappings are converted with
        `GenerationOptions.from_mapping`.

    Examples
    --------
    >>> generator = DesignGenerator(Range({"beta": (0.1, 0.8), "gamma": (0, 0.5)}))
    >>> design = generator.generate(bank, 50, targets, cutoff=3, n=2)
    >>> design.complete
    True
    """

    def __init__(
        self,
        domain: Range,
        options: Union[GenerationOptions, Mapping[str, Any], None] = None,
    ):
        if not isinstance(domain, Range):
            raise TypeError(
                f"Expected 'domain' to be of type Range, but received {type(domain)} instead."
            )

        self._domain = domain
        self._options = self._parse_options(GenerationOptions(), options)

    @staticmethod
    def _parse_options(
        base: GenerationOptions, options: Union[GenerationOptions, Mapping[str, Any], None]
    ) -> GenerationOptions:
        if options is None:
            return base
        elif isinstance(options, GenerationOptions):
            return options
        elif isinstance(options, Mapping):
            return base.updated(options)
        else:
            raise ConfigurationError(
                "Expected 'options' to be None, a GenerationOptions or a mapping, but "
                f"received {type(options)}."
            )

    @property
    def domain(self) -> Range:
        """(Read-only) The range in which points are generated."""
        return self._domain

    @property
    def options(self) -> GenerationOptions:
        """(Read-only) The default options for generation."""
        return self._options

    def generate(
        self,
        emulators: Mapping[str, AbstractEmulator],
        target_count: int,
        targets: Mapping[str, Target],
        accept_measure: Union[str, AcceptMeasure, None] = None,
        cutoff: Real = 3.0,
        n: int = 1,
        options: Union[GenerationOptions, Mapping[str, Any], None] = None,
        plausible_set: Optional[Sequence[Point]] = None,
        rng: RandomSource = None,
    ) -> GeneratedDesign:
        """Generate a design of points accepted by an accept measure.

        Parameters
        ----------
        emulators : Mapping[str, AbstractEmulator]
            Emulators keyed by target name, covering exactly the names in `targets`.
        target_count : int
            The number of points to generate.
        targets : Mapping[str, Target]
            The targets, keyed by name.
        accept_measure : str or AcceptMeasure, optional
            (Default: None) Overrides the accept measure given in the options.
        cutoff : numbers.Real, optional
            (Default: 3.0) The implausibility cutoff.
        n : int, optional
            (Default: 1) The order statistic used to aggregate per-target
            implausibilities.
        options : GenerationOptions or Mapping[str, Any], optional
            (Default: None) Options for this call. A mapping updates this generator's
            default options; a `GenerationOptions` replaces them.
        plausible_set : Sequence[Point], optional
            (Default: None) Points known to be non-implausible from a previous wave.
            Proposals are then confined to the box around them (see the `buffer`
            option) and, if the first round accepts nothing, they may seed the next.
            They are not added to the design unless proposed and accepted again.
        rng : int or numpy.random.Generator, optional
            (Default: None) The source of randomness. If ``None``, a generator seeded
            with the `seed` option is used.

        Returns
        -------
        GeneratedDesign
            The design. If the budget ran out first, it holds fewer than
            `target_count` points and ``budget_exhausted`` is ``True``.

        Raises
        ------
        ConfigurationError
            If any of the arguments are invalid or inconsistent. This is raised before
            any candidate is assessed.
        """

        opts = self._parse_options(self._options, options)
        validation.check_int(
            target_count,
            ConfigurationError(
                f"Expected 'target_count' to be an integer, but received {type(target_count)}."
            ),
        )
        if target_count < 0:
            raise ConfigurationError(
                f"Expected 'target_count' to be non-negative, but received {target_count}."
            )

        validate_reduction_args(n, cutoff)
        bank = check_schema(emulators, [], targets)
        measure = self._resolve_measure(
            accept_measure if accept_measure is not None else opts.accept_measure, opts
        )
        plausible_set = list(plausible_set) if plausible_set is not None else []
        self._domain.validate_points(plausible_set)
        rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(
            opts.seed if rng is None else rng
        )

        if target_count == 0:
            return GeneratedDesign((), 0, 0, 0, 0, False)

        return _Generation(
            self._domain, bank, targets, measure, cutoff, n, opts, rng, plausible_set
        ).run(target_count)

    @staticmethod
    def _resolve_measure(
        measure: Union[str, AcceptMeasure], opts: GenerationOptions
    ) -> AcceptMeasure:
        if opts.max_workers is None:
            return get_measure(measure)

        evaluator = ImplausibilityEvaluator(max_workers=opts.max_workers)
        if isinstance(measure, str) and measure == "default":
            return DefaultMeasure(evaluator)

        if isinstance(measure, ConstrainedMeasure) and measure.has_default_base:
            return measure.with_evaluator(evaluator)

        raise ConfigurationError(
            "The 'max_workers' option only applies to the default measure or a "
            "ConstrainedMeasure without an explicit base measure. Configure the "
            f"evaluator of {measure!r} directly instead."
        )


class _Generation:
    """State of a single run of design generation."""

    def __init__(
        self,
        domain: Range,
        emulators: EmulatorBank,
        targets: Mapping[str, Target],
        measure: AcceptMeasure,
        cutoff: Real,
        n: int,
        opts: GenerationOptions,
        rng: np.random.Generator,
        plausible_set: list[Point],
    ):
        self.domain = domain
        self.emulators = emulators
        self.targets = targets
        self.measure = measure
        self.cutoff = cutoff
        self.n = n
        self.opts = opts
        self.rng = rng
        self.region = domain.bounding_range(plausible_set, opts.buffer)
        self.seeds = domain.to_array(plausible_set)
        self.accepted = np.empty((0, domain.dim), dtype=float)
        self.candidates_evaluated = 0
        self.proposed = 0
        self.failed_rounds = 0

    def run(self, target_count: int) -> GeneratedDesign:
        opts = self.opts
        rounds = 0
        while rounds < opts.max_rounds:
            if len(self.accepted) >= target_count and rounds >= opts.min_rounds:
                break

            remaining = opts.max_candidates - self.candidates_evaluated
            if remaining <= 0:
                break

            size = self._batch_size(target_count, remaining)
            candidates = self._propose(size, first=rounds == 0)
            mask, scores = self._assess(candidates, want_scores=opts.relax_on_failure)
            self.proposed += len(candidates)
            rounds += 1

            new = candidates[mask]
            self.accepted = np.vstack([self.accepted, new])
            logger.info(
                "Round %d: accepted %d of %d candidates (%d of %d points found).",
                rounds,
                len(new),
                len(candidates),
                len(self.accepted),
                target_count,
            )

            if len(self.accepted) > 0:
                self.seeds = self.accepted
                self.failed_rounds = 0 if len(new) else self.failed_rounds + 1
            else:
                self.failed_rounds += 1
                self._reseed(candidates, scores)

        accepted_total = len(self.accepted)
        if accepted_total > target_count:
            idx = select_space_filling(
                self.accepted, target_count, self.domain.widths, self.rng
            )
            chosen = self.accepted[idx]
        else:
            chosen = self.accepted

        design = GeneratedDesign(
            points=self.domain.to_points(chosen),
            target_count=target_count,
            rounds=rounds,
            candidates_evaluated=self.candidates_evaluated,
            accepted_total=accepted_total,
            budget_exhausted=accepted_total < target_count,
        )
        if design.budget_exhausted:
            logger.warning(
                "Only %d of %d points found after %d rounds and %d candidates.",
                accepted_total,
                target_count,
                rounds,
                self.candidates_evaluated,
            )

        return design

    def _batch_size(self, target_count: int, remaining: int) -> int:
        opts = self.opts
        needed = target_count - len(self.accepted)
        if needed <= 0:
            needed = target_count

        if len(self.accepted) == 0:
            size = target_count * opts.points_factor * 2**self.failed_rounds
        else:
            rate = len(self.accepted) / self.proposed
            size = math.ceil(1.5 * needed / rate)

        size = max(1, min(size, opts.max_batch_size, remaining))
        logger.debug("Proposing a batch of %d candidates.", size)
        return size

    def _assess(
        self, candidates: NDArray, want_scores: bool = False
    ) -> tuple[NDArray, Optional[NDArray]]:
        """Call the accept measure once on the candidates, returning the acceptance
        mask and, if requested and the measure supports them, the aggregated scores.
        Every call counts towards the candidate budget."""

        points = self.domain.to_points(candidates)
        options = dict(self.opts.measure_options)
        if want_scores:
            options["return_scores"] = True

        outcome = np.asarray(
            self.measure(self.emulators, points, self.targets, self.cutoff, self.n, **options)
        ).reshape(-1)
        if outcome.shape[0] != len(points):
            raise ValueError(
                f"Accept measure returned {outcome.shape[0]} values for {len(points)} points."
            )

        self.candidates_evaluated += len(points)
        scores = None if outcome.dtype == bool else outcome.astype(float)
        return outcome_to_mask(outcome, self.cutoff), scores

    def _propose(self, size: int, first: bool = False) -> NDArray:
        opts = self.opts
        if first or len(self.seeds) == 0 or opts.resample_strategy is ResampleStrategy.LHS:
            return self.region.scale_array(maximin_lhs(self.domain.dim, size, self.rng))

        n_explore = int(round(size * opts.explore_fraction))
        n_exploit = size - n_explore
        if opts.resample_strategy is ResampleStrategy.LINE and len(self.seeds) >= 2:
            exploit = self._line_sample(n_exploit)
        else:
            exploit = self._importance_sample(n_exploit)

        n_explore = size - len(exploit)
        explore = self.region.scale_array(maximin_lhs(self.domain.dim, n_explore, self.rng))
        return np.vstack([exploit, explore])

    def _importance_sample(self, size: int) -> NDArray:
        """Gaussian perturbations of the seeds, keeping only those inside the range."""

        seeds = self.seeds
        dim = self.domain.dim
        spread = seeds.std(axis=0) * len(seeds) ** (-1 / (dim + 4))
        fallback = 0.05 * self.domain.widths
        sd = self.opts.importance_scale * np.where(spread > 0, spread, fallback)

        samples = np.empty((0, dim), dtype=float)
        for _ in range(10):
            if len(samples) >= size:
                break

            centres = seeds[self.rng.integers(len(seeds), size=size)]
            draws = centres + self.rng.normal(size=centres.shape) * sd
            samples = np.vstack([samples, draws[self.domain.contains_array(draws)]])

        return samples[:size]

    def _line_sample(self, size: int) -> NDArray:
        """Points on segments through random pairs of seeds, extended at both ends."""

        seeds = self.seeds
        gap = self.opts.line_gap
        samples = np.empty((0, self.domain.dim), dtype=float)
        for _ in range(10):
            if len(samples) >= size:
                break

            first = self.rng.integers(len(seeds), size=size)
            second = (first + self.rng.integers(1, len(seeds), size=size)) % len(seeds)
            t = self.rng.uniform(-gap, 1 + gap, size=(size, 1))
            draws = seeds[first] + t * (seeds[second] - seeds[first])
            samples = np.vstack([samples, draws[self.domain.contains_array(draws)]])

        return samples[:size]

    def _reseed(self, candidates: NDArray, scores: Optional[NDArray]) -> None:
        """Find seeds for the next round after a round in which nothing has ever been
        accepted."""

        if self.opts.resample_strategy is ResampleStrategy.OPTIMISE:
            seed = self._optimised_seed()
            if seed is not None:
                self.seeds = seed
                return

        if self.opts.relax_on_failure:
            self.seeds = self._relaxed_seeds(candidates, scores)

    def _relaxed_seeds(self, candidates: NDArray, scores: Optional[NDArray]) -> NDArray:
        if scores is None:
            logger.debug("Accept measure does not return scores; cannot relax cutoff.")
            return self.seeds

        finite = np.flatnonzero(np.isfinite(scores))
        if len(finite) == 0:
            return self.seeds

        k = max(1, math.ceil(self.opts.relaxed_fraction * len(candidates)))
        best = finite[np.argsort(scores[finite])[:k]]
        logger.debug(
            "No points accepted; seeding next round with %d candidates scoring at most %.3g.",
            len(best),
            float(scores[best].max()),
        )
        return candidates[best]

    def _optimised_seed(self) -> Optional[NDArray]:
        """Minimise the aggregated score over the region, within what is left of the
        candidate budget. Returns ``None`` if too little budget is left to run the
        optimiser."""

        # Scipy never uses fewer than 5 population members
        population = max(5, _OPTIMISER_POPSIZE * self.domain.dim)
        remaining = self.opts.max_candidates - self.candidates_evaluated
        maxiter = min(_OPTIMISER_MAXITER, remaining // population - 1)
        if maxiter < 1:
            logger.debug("Candidate budget too small to seed the next round by optimisation.")
            return None

        def objective(array: NDArray) -> NDArray:
            mask, scores = self._assess(array, want_scores=True)
            return np.where(mask, 0.0, 1.0) if scores is None else scores

        x, value = minimise(
            objective,
            self.region,
            seed=self.rng,
            maxiter=maxiter,
            strict=False,
            popsize=_OPTIMISER_POPSIZE,
        )
        logger.debug("Seeding next round at optimised point %r (score %.3g).", x, value)
        return x.to_array()[np.newaxis, :]


def generate_new_design(
    domain: Range,
    emulators: Mapping[str, AbstractEmulator],
    target_count: int,
    targets: Mapping[str, Target],
    accept_measure: Union[str, AcceptMeasure, None] = None,
    cutoff: Real = 3.0,
    n: int = 1,
    options: Union[GenerationOptions, Mapping[str, Any], None] = None,
    plausible_set: Optional[Sequence[Point]] = None,
    rng: RandomSource = None,
) -> GeneratedDesign:
    """Generate a design of accepted points in `domain`; see `DesignGenerator.generate`."""

    return DesignGenerator(domain, options).generate(
        emulators,
        target_count,
        targets,
        accept_measure=accept_measure,
        cutoff=cutoff,
        n=n,
        plausible_set=plausible_set,
        rng=rng,
    )


def space_removed(
    domain: Range,
    emulators: Mapping[str, AbstractEmulator],
    targets: Mapping[str, Target],
    accept_measure: Union[str, AcceptMeasure, None] = None,
    cutoff: Real = 3.0,
    n: int = 1,
    n_points: int = 1000,
    rng: RandomSource = None,
    **measure_options: Any,
) -> float:
    """Estimate the fraction of a range rejected by an accept measure.

    The estimate is the proportion of a Latin hypercube sample of `n_points` points
    over `domain` that the measure rejects.
    """

    _check_positive_int("n_points", n_points)
    validate_reduction_args(n, cutoff)
    bank = check_schema(emulators, [], targets)
    measure = get_measure(accept_measure)
    rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

    points = domain.to_points(domain.scale_array(maximin_lhs(domain.dim, n_points, rng)))
    outcome = measure(bank, points, targets, cutoff, n, **measure_options)
    return 1.0 - float(np.mean(outcome_to_mask(outcome, cutoff)))
