"""
Implausibility of points in parameter space with respect to a collection of targets.

For a point ``x``, a target with observed value ``z`` and observational standard
deviation ``sigma``, and an emulator predicting the corresponding simulator output
with mean ``m(x)`` and variance ``v(x)``, the implausibility is

```
I(x) = |m(x) - z| / sqrt(v(x) + d + sigma**2)
```

where ``d`` is the emulator's additional discrepancy variance. For a range-type target
with bounds ``[a, b]`` the implausibility is zero when ``a <= m(x) <= b`` and otherwise
the distance from ``m(x)`` to the nearer bound divided by ``sqrt(v(x) + d)``.

Scores for several targets are reduced to a single number per point by taking the
n-th largest score, so that ``n = 1`` gives the maximum implausibility and larger `n`
make the measure robust to a few poorly-emulated targets.


[`ImplausibilityEvaluator`][hmatch.core.implausibility.ImplausibilityEvaluator]
---------------------------------------------------------------------------------------
[`evaluate`][hmatch.core.implausibility.ImplausibilityEvaluator.evaluate]
Acceptance (or aggregated score) per point.

[`implausibility_matrix`][hmatch.core.implausibility.ImplausibilityEvaluator.implausibility_matrix]
Per-point, per-target implausibility scores.

[`nth_implausibility`][hmatch.core.implausibility.nth_implausibility]
Module-level shortcut returning aggregated scores.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from numbers import Real
from typing import Optional

import numpy as np
from numpy.typing import NDArray

import hmatch.utilities.validation as validation
from hmatch.core.modelling import (
    AbstractEmulator,
    ConfigurationError,
    EmulatorBank,
    Point,
    Prediction,
    Target,
)
from hmatch.core.numerics import nth_largest, standardised_distance


class EmulatorPredictionError(RuntimeError):
    """Raised when an emulator fails to make a prediction during implausibility
    calculations. The original exception is available as ``__cause__``.

    Attributes
    ----------
    point : Point
        The point at which prediction failed.
    target : str
        The name of the target whose emulator failed.
    """

    def __init__(self, point: Point, target: str, msg: Optional[str] = None):
        self.point = point
        self.target = target
        super().__init__(
            msg or f"Emulator for target '{target}' failed to predict at {point!r}."
        )


def validate_reduction_args(n: int, cutoff: Real) -> None:
    """Check the reduction index and implausibility cutoff used in history matching.

    Raises
    ------
    ConfigurationError
        If `n` is not a positive integer or `cutoff` is not a non-negative real
        number.
    """

    validation.check_int(
        n, ConfigurationError(f"Expected 'n' to be an integer, but received {type(n)}.")
    )
    if n < 1:
        raise ConfigurationError(f"Expected 'n' to be at least 1, but received {n}.")

    validation.check_real(
        cutoff,
        ConfigurationError(
            f"Expected 'cutoff' to be a real number, but received {type(cutoff)}."
        ),
    )
    if math.isnan(cutoff) or cutoff < 0:
        raise ConfigurationError(
            f"Expected 'cutoff' to be a non-negative real number, but received {cutoff}."
        )


def check_schema(
    emulators: Mapping[str, AbstractEmulator],
    points: Sequence[Point],
    targets: Mapping[str, Target],
) -> EmulatorBank:
    """Check that emulators and targets match, that all targets are `Target`
    objects and that all points share one parameter schema. Returns the emulators as
    an `EmulatorBank`.

    Raises
    ------
    ConfigurationError
        If any of the checks fail.
    """

    try:
        bank = emulators if isinstance(emulators, EmulatorBank) else EmulatorBank(emulators)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid emulators: {e}") from e

    if not isinstance(targets, Mapping):
        raise ConfigurationError(
            f"Expected 'targets' to be a mapping of target names to Target objects, "
            f"but received {type(targets)}."
        )

    if not targets:
        raise ConfigurationError("At least one target must be supplied.")

    for name, target in targets.items():
        if not isinstance(target, Target):
            raise ConfigurationError(
                f"Expected target '{name}' to be of type Target, but received "
                f"{type(target)}."
            )

    bank.check_covers(targets)

    if points:
        names = points[0].names if isinstance(points[0], Point) else None
        for i, point in enumerate(points):
            if not isinstance(point, Point):
                raise ConfigurationError(
                    f"Expected point {i} to be of type Point, but received {type(point)}."
                )

            if point.names != names:
                raise ConfigurationError(
                    f"Point {i} has parameters {point.names}, which differ from the "
                    f"parameters {names} of the first point."
                )

    return bank


def target_implausibility(target: Target, prediction: Prediction, discrepancy: Real) -> float:
    """The implausibility of a single prediction with respect to a single target."""

    if target.is_range:
        lower, upper = target.bounds
        if lower <= prediction.mean <= upper:
            return 0.0

        diff = min(abs(prediction.mean - lower), abs(prediction.mean - upper))
        variance = prediction.variance + discrepancy
    else:
        diff = prediction.mean - target.value
        variance = prediction.variance + discrepancy + target.sigma**2

    return float(standardised_distance(diff, variance))


class ImplausibilityEvaluator:
    """Computes implausibility of points for a bank of emulators and their targets.

    An evaluator holds no state between calls beyond its configuration, so the same
    evaluator may be used for any number of batches, including concurrently.

    Parameters
    ----------
    max_workers : int, optional
        (Default: None) If greater than 1, emulator predictions are computed in a
        thread pool of this size, split into tasks of one target and up to
        `chunk_size` points. Otherwise predictions are computed sequentially.
    chunk_size : int, optional
        (Default: 64) The number of points per task when predicting in parallel.

    Examples
    --------
    >>> evaluator = ImplausibilityEvaluator()
    >>> evaluator.evaluate(bank, points, targets, n=2, cutoff=3)
    array([ True, False,  True])
    >>> evaluator.evaluate(bank, points, targets, n=2, return_scores=True)
    array([0.42, 5.1, 2.9])
    """

    def __init__(self, max_workers: Optional[int] = None, chunk_size: int = 64):
        if max_workers is not None:
            validation.check_int(
                max_workers,
                TypeError(
                    "Expected 'max_workers' to be None or an integer, but received "
                    f"{type(max_workers)}."
                ),
            )
            if max_workers < 1:
                raise ValueError(
                    f"Expected 'max_workers' to be positive, but received {max_workers}."
                )

        validation.check_int(
            chunk_size,
            TypeError(f"Expected 'chunk_size' to be an integer, but received {type(chunk_size)}."),
        )
        if chunk_size < 1:
            raise ValueError(
                f"Expected 'chunk_size' to be positive, but received {chunk_size}."
            )

        self._max_workers = max_workers
        self._chunk_size = chunk_size

    @property
    def max_workers(self) -> Optional[int]:
        """(Read-only) The size of the thread pool used for predictions, or ``None`` if
        predictions are made sequentially."""
        return self._max_workers

    def implausibility_matrix(
        self,
        emulators: Mapping[str, AbstractEmulator],
        points: Sequence[Point],
        targets: Mapping[str, Target],
    ) -> NDArray:
        """Compute the implausibility of every point with respect to every target.

        Parameters
        ----------
        emulators : Mapping[str, AbstractEmulator]
            Emulators keyed by the names of the targets they predict. Must cover
            exactly the names in `targets`.
        points : Sequence[Point]
            The points to assess, all with the same parameter names.
        targets : Mapping[str, Target]
            The targets, keyed by name.

        Returns
        -------
        numpy.ndarray
            An array of shape ``(len(points), len(targets))``; column ``j`` holds the
            scores for the ``j``-th target in the iteration order of `targets`.

        Raises
        ------
        ConfigurationError
            If the emulators, targets or points are inconsistent.
        EmulatorPredictionError
            If an emulator fails to make a prediction.
        """

        points = list(points)
        bank = check_schema(emulators, points, targets)
        names = list(targets)
        scores = np.empty((len(points), len(names)), dtype=float)
        if not points:
            return scores

        tasks = [
            (j, start)
            for j in range(len(names))
            for start in range(0, len(points), self._chunk_size)
        ]

        def run(task: tuple[int, int]) -> None:
            j, start = task
            name = names[j]
            stop = min(start + self._chunk_size, len(points))
            scores[start:stop, j] = self._score_chunk(
                bank[name], targets[name], name, points[start:stop]
            )

        if self._max_workers is None or self._max_workers == 1 or len(tasks) == 1:
            for task in tasks:
                run(task)
        else:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                # Consume results so that exceptions raised in workers propagate
                for _ in pool.map(run, tasks):
                    pass

        return scores

    @staticmethod
    def _score_chunk(
        emulator: AbstractEmulator, target: Target, name: str, points: Sequence[Point]
    ) -> list[float]:
        chunk_scores = []
        for point in points:
            try:
                prediction = emulator.predict(point)
            except Exception as e:
                raise EmulatorPredictionError(point, name) from e

            if not isinstance(prediction, Prediction):
                raise EmulatorPredictionError(
                    point,
                    name,
                    f"Emulator for target '{name}' returned {type(prediction)} instead "
                    f"of a Prediction at {point!r}.",
                )

            chunk_scores.append(
                target_implausibility(target, prediction, emulator.discrepancy)
            )

        return chunk_scores

    def evaluate(
        self,
        emulators: Mapping[str, AbstractEmulator],
        points: Sequence[Point],
        targets: Mapping[str, Target],
        n: int = 1,
        cutoff: Real = 3.0,
        return_scores: bool = False,
    ) -> NDArray:
        """Assess points against the targets using the n-th largest implausibility.

        Parameters
        ----------
        emulators : Mapping[str, AbstractEmulator]
            Emulators keyed by the names of the targets they predict. Must cover
            exactly the names in `targets`.
        points : Sequence[Point]
            The points to assess, all with the same parameter names. May be empty.
        targets : Mapping[str, Target]
            The targets, keyed by name.
        n : int, optional
            (Default: 1) Which order statistic of the per-target scores to use: 1 for
            the maximum, 2 for the second-largest, etc. Values larger than the number
            of targets select the smallest score.
        cutoff : numbers.Real, optional
            (Default: 3.0) The implausibility threshold at or below which a point is
            accepted.
        return_scores : bool, optional
            (Default: False) If ``True``, return the aggregated scores rather than
            acceptance booleans.

        Returns
        -------
        numpy.ndarray
            A 1-dimensional array aligned with `points`: booleans
            ``aggregated_score <= cutoff``, or the aggregated scores themselves if
            `return_scores` is ``True``.

        Raises
        ------
        ConfigurationError
            If `n` or `cutoff` is invalid, or the emulators, targets or points are
            inconsistent.
        EmulatorPredictionError
            If an emulator fails to make a prediction.
        """

        validate_reduction_args(n, cutoff)
        aggregated = nth_largest(self.implausibility_matrix(emulators, points, targets), n)
        if return_scores:
            return aggregated

        return aggregated <= cutoff


def nth_implausibility(
    emulators: Mapping[str, AbstractEmulator],
    points: Sequence[Point],
    targets: Mapping[str, Target],
    n: int = 1,
) -> NDArray:
    """Compute the n-th largest implausibility of each point, using a sequential
    `ImplausibilityEvaluator`."""

    return ImplausibilityEvaluator().evaluate(
        emulators, points, targets, n=n, return_scores=True
    )
