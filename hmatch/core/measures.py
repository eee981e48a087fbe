"""
Accept measures: the pluggable rules deciding which candidate points are retained
when generating a design.

Every accept measure has the same call signature,
``measure(emulators, points, targets, cutoff, n, **options)``, and returns a
1-dimensional Numpy array aligned positionally with `points`. By default the array
holds booleans (``True`` meaning accept); if the option ``return_scores=True`` is
given, a measure that supports scoring returns aggregated implausibility scores
instead, with rejected points assigned a score greater than the cutoff.

The default measure delegates to an `ImplausibilityEvaluator`. A `ConstrainedMeasure`
first applies a cheap structural predicate on the raw coordinates (for example an
ordering constraint between parameters) and only runs the wrapped measure on the
points that satisfy it.

Measures can be registered by name with `register_measure` and looked up with
`get_measure`, which is how generation options select a measure.
"""

from __future__ import annotations

import abc
import logging
import math
from collections.abc import Mapping, Sequence
from numbers import Real
from typing import Any, Callable, Optional, Union

import numpy as np
from numpy.typing import NDArray

from hmatch.core.implausibility import ImplausibilityEvaluator, validate_reduction_args
from hmatch.core.modelling import AbstractEmulator, ConfigurationError, Point, Target

logger = logging.getLogger(__name__)

Predicate = Callable[[Sequence[Point]], Sequence[bool]]
"""A structural predicate: maps a sequence of points to one boolean per point."""


class AcceptMeasure(abc.ABC):
    """Decides, for each of a batch of candidate points, whether it is retained."""

    @abc.abstractmethod
    def __call__(
        self,
        emulators: Mapping[str, AbstractEmulator],
        points: Sequence[Point],
        targets: Mapping[str, Target],
        cutoff: Real,
        n: int,
        **options: Any,
    ) -> NDArray:
        """Assess a batch of points.

        Parameters
        ----------
        emulators : Mapping[str, AbstractEmulator]
            Emulators keyed by target name.
        points : Sequence[Point]
            The candidate points.
        targets : Mapping[str, Target]
            The targets, keyed by name.
        cutoff : numbers.Real
            The implausibility cutoff.
        n : int
            The order statistic used to aggregate per-target implausibilities.
        **options :
            Extra options. ``return_scores=True`` requests aggregated scores instead
            of booleans; measures may accept further options of their own.

        Returns
        -------
        numpy.ndarray
            Booleans, or scores if requested and supported, aligned with `points`.
        """

        raise NotImplementedError


class DefaultMeasure(AcceptMeasure):
    """Accepts a point precisely when its n-th largest implausibility is no greater
    than the cutoff.

    Parameters
    ----------
    evaluator : ImplausibilityEvaluator, optional
        (Default: None) The evaluator to delegate to. If ``None``, a sequential
        evaluator is used.
    """

    def __init__(self, evaluator: Optional[ImplausibilityEvaluator] = None):
        self._evaluator = evaluator if evaluator is not None else ImplausibilityEvaluator()

    @property
    def evaluator(self) -> ImplausibilityEvaluator:
        """(Read-only) The evaluator this measure delegates to."""
        return self._evaluator

    def __call__(self, emulators, points, targets, cutoff, n, **options) -> NDArray:
        return self._evaluator.evaluate(
            emulators,
            points,
            targets,
            n=n,
            cutoff=cutoff,
            return_scores=bool(options.get("return_scores", False)),
        )


class ConstrainedMeasure(AcceptMeasure):
    """Composes a structural predicate on raw coordinates with another measure.

    Points failing the predicate are rejected outright. The wrapped measure is only
    invoked on the points satisfying the predicate, and never on an empty selection;
    its results are written back into the positions of those points. Rejected points
    are reported as ``False``, or as a score of ``inf`` when scores are requested.

    Parameters
    ----------
    predicate : Callable[[Sequence[Point]], Sequence[bool]]
        Maps a sequence of points to one boolean per point, ``True`` meaning the point
        satisfies the structural constraint. See `OrderingConstraint` and
        `predicate_from_function`.
    base : AcceptMeasure, optional
        (Default: None) The measure applied to points satisfying the predicate. If
        ``None`` then a `DefaultMeasure` is used.

    Examples
    --------
    Accept only points with ``beta1 > beta2 > beta3`` that are also non-implausible:

    >>> measure = ConstrainedMeasure(OrderingConstraint("beta1", "beta2", "beta3"))
    >>> measure(bank, points, targets, cutoff=3, n=1)
    array([False,  True, False, False])
    """

    def __init__(self, predicate: Predicate, base: Optional[AcceptMeasure] = None):
        if not callable(predicate):
            raise TypeError(
                f"Expected 'predicate' to be callable, but received {type(predicate)}."
            )

        if base is not None and not isinstance(base, AcceptMeasure):
            raise TypeError(
                f"Expected 'base' to be None or of type AcceptMeasure, but received "
                f"{type(base)}."
            )

        self._predicate = predicate
        self._implicit_base = base is None
        self._base = base if base is not None else DefaultMeasure()

    @property
    def predicate(self) -> Predicate:
        """(Read-only) The structural predicate."""
        return self._predicate

    @property
    def base(self) -> AcceptMeasure:
        """(Read-only) The measure applied to points satisfying the predicate."""
        return self._base

    @property
    def has_default_base(self) -> bool:
        """(Read-only) Whether the base is a `DefaultMeasure` created by this class
        rather than supplied by the caller."""
        return self._implicit_base

    def with_evaluator(self, evaluator: ImplausibilityEvaluator) -> ConstrainedMeasure:
        """Return a copy of this measure whose base is a `DefaultMeasure` delegating to
        `evaluator`.

        Raises
        ------
        ValueError
            If this measure was created with an explicit base measure, which would be
            discarded.
        """

        if not self.has_default_base:
            raise ValueError(
                "Cannot replace the evaluator of a constrained measure created with an "
                "explicit base measure."
            )

        measure = ConstrainedMeasure(self._predicate, DefaultMeasure(evaluator))
        measure._implicit_base = True
        return measure

    def __call__(self, emulators, points, targets, cutoff, n, **options) -> NDArray:
        validate_reduction_args(n, cutoff)
        points = list(points)
        return_scores = bool(options.get("return_scores", False))

        mask = np.asarray(self._predicate(points), dtype=bool).reshape(-1)
        if mask.shape[0] != len(points):
            raise ValueError(
                f"Structural predicate returned {mask.shape[0]} values for "
                f"{len(points)} points."
            )

        if return_scores:
            outcome = np.full(len(points), math.inf, dtype=float)
        else:
            outcome = np.zeros(len(points), dtype=bool)

        if not mask.any():
            logger.debug("No points out of %d satisfied the structural predicate.", len(points))
            return outcome

        selected = [point for point, keep in zip(points, mask) if keep]
        sub_outcome = np.asarray(
            self._base(emulators, selected, targets, cutoff, n, **options)
        ).reshape(-1)
        if sub_outcome.shape[0] != len(selected):
            raise ValueError(
                f"Wrapped measure returned {sub_outcome.shape[0]} values for "
                f"{len(selected)} points."
            )

        if return_scores and sub_outcome.dtype == bool:
            # Wrapped measure cannot score: keep a score that preserves the outcome.
            sub_outcome = np.where(sub_outcome, 0.0, math.inf)
        elif not return_scores:
            sub_outcome = outcome_to_mask(sub_outcome, cutoff)

        outcome[mask] = sub_outcome
        return outcome


class FunctionMeasure(AcceptMeasure):
    """Adapts a plain function with the accept measure signature into an
    `AcceptMeasure`.

    The function is called as ``func(emulators, points, targets, cutoff, n,
    **options)``. Its result is converted to a 1-dimensional Numpy array, whose length
    is checked against the number of points. If the function does not accept the
    ``return_scores`` option, it may simply ignore it and return booleans.

    Parameters
    ----------
    func : Callable
        The function to adapt.
    """

    def __init__(self, func: Callable[..., Sequence[Union[bool, Real]]]):
        if not callable(func):
            raise TypeError(f"Expected 'func' to be callable, but received {type(func)}.")

        self._func = func

    def __call__(self, emulators, points, targets, cutoff, n, **options) -> NDArray:
        points = list(points)
        if not points:
            return np.zeros(0, dtype=bool)

        outcome = np.asarray(self._func(emulators, points, targets, cutoff, n, **options))
        outcome = outcome.reshape(-1)
        if outcome.shape[0] != len(points):
            raise ValueError(
                f"Accept measure returned {outcome.shape[0]} values for {len(points)} "
                "points."
            )

        if outcome.dtype != bool and not np.issubdtype(outcome.dtype, np.number):
            raise TypeError(
                f"Accept measure must return booleans or real numbers, but returned "
                f"values of type {outcome.dtype}."
            )

        return outcome


def outcome_to_mask(outcome: Sequence[Union[bool, Real]], cutoff: Real) -> NDArray:
    """Convert the output of an accept measure into booleans.

    Boolean outputs are returned as they are; numeric outputs are taken to be
    aggregated scores, accepted when no greater than `cutoff`.
    """

    outcome = np.asarray(outcome).reshape(-1)
    if outcome.dtype == bool:
        return outcome

    return outcome.astype(float) <= cutoff


class OrderingConstraint:
    """A structural predicate requiring parameters to be in decreasing order.

    The parameters are given in the order of their required values, largest first:
    ``OrderingConstraint("a", "b", "c")`` is satisfied by points with ``a > b > c``
    (or ``a >= b >= c`` if `strict` is ``False``).

    Parameters
    ----------
    *names : str
        At least two parameter names, largest first.
    strict : bool, optional
        (Default: True) Whether the ordering is strict.

    Examples
    --------
    >>> constraint = OrderingConstraint("x", "y")
    >>> constraint([Point(x=0.6, y=0.2), Point(x=0.1, y=0.4)])
    array([ True, False])
    """

    def __init__(self, *names: str, strict: bool = True):
        if len(names) < 2:
            raise ValueError("An ordering constraint requires at least two parameters.")

        if not all(isinstance(name, str) for name in names):
            raise TypeError("Expected parameter names to be of type str.")

        if len(set(names)) != len(names):
            raise ValueError(f"Parameter names must be distinct, but received {names}.")

        self._names = names
        self._strict = strict

    @property
    def names(self) -> tuple[str, ...]:
        """(Read-only) The constrained parameters, largest first."""
        return self._names

    def __call__(self, points: Sequence[Point]) -> NDArray:
        if not points:
            return np.zeros(0, dtype=bool)

        try:
            values = np.array(
                [[point[name] for name in self._names] for point in points], dtype=float
            )
        except KeyError as e:
            raise ConfigurationError(
                f"Ordering constraint refers to a parameter not in the points: {e}"
            ) from None

        diffs = values[:, :-1] - values[:, 1:]
        return np.all(diffs > 0 if self._strict else diffs >= 0, axis=1)

    def __repr__(self) -> str:
        relation = " > " if self._strict else " >= "
        return f"OrderingConstraint({relation.join(self._names)})"


def predicate_from_function(func: Callable[[Point], bool]) -> Predicate:
    """Lift a function deciding a single point into a structural predicate on a
    sequence of points."""

    def predicate(points: Sequence[Point]) -> NDArray:
        return np.array([bool(func(point)) for point in points], dtype=bool)

    return predicate


_REGISTRY: dict[str, Callable[[], AcceptMeasure]] = {"default": DefaultMeasure}


def register_measure(name: str, factory: Callable[[], AcceptMeasure]) -> None:
    """Register a factory for an accept measure under a name, so that the measure can
    be selected by name in generation options.

    Raises
    ------
    ValueError
        If `name` is already registered.
    """

    if not isinstance(name, str):
        raise TypeError(f"Expected 'name' to be of type str, but received {type(name)}.")

    if not callable(factory):
        raise TypeError(
            f"Expected 'factory' to be callable, but received {type(factory)}."
        )

    if name in _REGISTRY:
        raise ValueError(f"An accept measure is already registered under '{name}'.")

    _REGISTRY[name] = factory


def unregister_measure(name: str) -> None:
    """Remove a registered accept measure. The built-in ``"default"`` measure cannot
    be removed."""

    if name == "default":
        raise ValueError("Cannot unregister the default accept measure.")

    try:
        del _REGISTRY[name]
    except KeyError:
        raise ValueError(f"No accept measure registered under '{name}'.") from None


def registered_measures() -> tuple[str, ...]:
    """The names of all registered accept measures."""
    return tuple(_REGISTRY)


def get_measure(measure: Union[str, AcceptMeasure, None] = None) -> AcceptMeasure:
    """Resolve an accept measure from a registered name or an `AcceptMeasure`
    instance. ``None`` resolves to the default measure.

    Raises
    ------
    ConfigurationError
        If `measure` is an unknown name, or neither a name nor an `AcceptMeasure`.
        Plain functions should be wrapped in `FunctionMeasure`.
    """

    if measure is None:
        measure = "default"

    if isinstance(measure, AcceptMeasure):
        return measure

    if isinstance(measure, str):
        try:
            factory = _REGISTRY[measure]
        except KeyError:
            raise ConfigurationError(
                f"No accept measure registered under '{measure}'; registered measures "
                f"are {', '.join(map(repr, _REGISTRY))}."
            ) from None

        resolved = factory()
        if not isinstance(resolved, AcceptMeasure):
            raise ConfigurationError(
                f"Factory registered under '{measure}' returned {type(resolved)} "
                "instead of an AcceptMeasure."
            )

        return resolved

    raise ConfigurationError(
        "Expected the accept measure to be a registered name or an AcceptMeasure, but "
        f"received {type(measure)}. Wrap plain functions in FunctionMeasure."
    )
