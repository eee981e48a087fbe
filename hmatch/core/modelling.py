"""Basic objects for expressing points, ranges, targets and emulators in history
matching."""

from __future__ import annotations

import abc
import dataclasses
import math
from collections.abc import Iterable, Mapping, Sequence
from numbers import Real
from typing import Any, Callable, Iterator, Optional, TypeVar, Union

import numpy as np
from numpy.typing import NDArray

import hmatch.utilities.validation as validation
from hmatch.core.numerics import equal_within_tolerance

S = TypeVar("S")


class ConfigurationError(ValueError):
    """Raised when the arguments to a history matching operation are inconsistent,
    for example when the targets are not covered by the emulators or a point does not
    have the parameters of the range it is meant to lie in."""


class Point(Mapping):
    """A point in parameter space, as an ordered mapping of parameter names to values.

    `Point` objects are immutable. The order of the parameters is the order in which
    they were supplied and is preserved by iteration, `names` and `coordinates`.
    Two points are equal when they have the same parameter names in the same order
    and their values agree up to the tolerance ``hmatch.core.numerics.FLOAT_TOLERANCE``.

    Parameters
    ----------
    coords : Mapping[str, numbers.Real] or iterable of (str, numbers.Real), optional
        The coordinates of the point. Each value must define a finite number that is
        not a missing value (i.e. not None or NaN).
    **kwargs : numbers.Real
        Further coordinates, given as keyword arguments. These are appended after
        those in `coords`.

    Attributes
    ----------
    names : tuple[str, ...]
        (Read-only) The parameter names, in order.
    coordinates : tuple[numbers.Real, ...]
        (Read-only) The coordinates, in the same order as `names`. The usual mapping
        method ``values()`` gives the same coordinates as a view.

    Examples
    --------
    >>> x = Point(beta=0.2, gamma=0.1)
    >>> x.names
    ('beta', 'gamma')
    >>> x["gamma"]
    0.1
    >>> x == Point({"beta": 0.2, "gamma": 0.1})
    True
    """

    def __init__(
        self,
        coords: Union[Mapping[str, Real], Iterable[tuple[str, Real]], None] = None,
        **kwargs: Real,
    ):
        items = list(dict(coords).items()) if coords is not None else []
        if repeated := set(kwargs).intersection(name for name, _ in items):
            raise ValueError(
                f"Parameter '{sorted(repeated)[0]}' supplied more than once."
            )

        items.extend(kwargs.items())
        self._names = tuple(name for name, _ in items)
        self._values = self._validate_values(tuple(value for _, value in items))
        self._validate_names(self._names)
        self._index = {name: i for i, name in enumerate(self._names)}

    @staticmethod
    def _validate_names(names: tuple[Any, ...]) -> None:
        if not all(isinstance(name, str) for name in names):
            raise TypeError("Expected all parameter names to be of type str.")

    @staticmethod
    def _validate_values(values: tuple[Any, ...]) -> tuple[Real, ...]:
        validation.check_entries_not_none(
            values, TypeError("Point coordinates must be real numbers, not None")
        )
        validation.check_entries_real(
            values, TypeError("Point coordinates must be instances of real numbers")
        )
        validation.check_entries_finite(
            values, ValueError("Cannot supply NaN or non-finite numbers as coordinates")
        )
        return values

    @classmethod
    def from_array(cls, array: NDArray, names: Sequence[str]) -> Point:
        """Create a point from a 1-dimensional Numpy array of coordinates, labelled
        with the given parameter names (in the same order)."""

        if not isinstance(array, np.ndarray):
            raise TypeError(
                f"Expected 'array' of type numpy.ndarray but received {type(array)}."
            )

        if not array.ndim == 1:
            raise ValueError(
                "Expected 'array' to be a 1-dimensional numpy.ndarray but received an "
                f"array with {array.ndim} dimensions."
            )

        if len(names) != len(array):
            raise ValueError(
                f"Expected {len(array)} parameter names for the array, but received "
                f"{len(names)}."
            )

        return cls(zip(names, (float(v) for v in array)))

    @property
    def names(self) -> tuple[str, ...]:
        """(Read-only) The parameter names, in order."""
        return self._names

    @property
    def coordinates(self) -> tuple[Real, ...]:
        """(Read-only) The coordinates, in the same order as `names`."""
        return self._values

    def to_array(self) -> NDArray:
        """Return the coordinates as a 1-dimensional array of floats."""
        return np.array(self._values, dtype=float)

    def __getitem__(self, name: str) -> Real:
        try:
            return self._values[self._index[name]]
        except KeyError:
            raise KeyError(f"Point has no parameter '{name}'.") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Point):
            return False

        return self._names == other._names and equal_within_tolerance(
            self._values, other._values
        )

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        coords = ", ".join(f"{name}={value!r}" for name, value in self.items())
        return f"Point({coords})"

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_index"):
            raise AttributeError("Point objects are immutable.")

        super().__setattr__(name, value)


class Range(Mapping):
    """The admissible rectangular region of parameter space.

    A range maps each parameter name to a closed interval ``(lo, hi)`` with
    ``lo < hi``. The order in which the parameters are supplied defines the order of
    coordinates used whenever points are converted to arrays. Membership of a `Point`
    can be tested with the ``in`` operator; see the examples.

    Parameters
    ----------
    bounds : Mapping[str, tuple[numbers.Real, numbers.Real]]
        The lower and upper bounds for each parameter.

    Attributes
    ----------
    names : tuple[str, ...]
        (Read-only) The parameter names, in order.
    dim : int
        (Read-only) The number of parameters.
    bounds : tuple[tuple[numbers.Real, numbers.Real], ...]
        (Read-only) The bounds, in the same order as `names`.

    Examples
    --------
    >>> rng = Range({"beta": (0.1, 0.8), "gamma": (0, 0.5)})
    >>> Point(beta=0.3, gamma=0.5) in rng
    True
    >>> Point(beta=0.9, gamma=0.2) in rng
    False
    """

    def __init__(self, bounds: Mapping[str, tuple[Real, Real]]):
        self._validate_bounds(bounds)
        self._bounds = {name: (bnd[0], bnd[1]) for name, bnd in bounds.items()}
        self._names = tuple(self._bounds)
        self._lower = np.array([bnd[0] for bnd in self._bounds.values()], dtype=float)
        self._upper = np.array([bnd[1] for bnd in self._bounds.values()], dtype=float)

    @staticmethod
    def _validate_bounds(bounds: Any) -> None:
        if not isinstance(bounds, Mapping):
            raise TypeError(
                "Expected 'bounds' to be a mapping of parameter names to pairs of real "
                f"numbers, but received {type(bounds)}."
            )

        if not bounds:
            raise ValueError("At least one pair of bounds must be provided.")

        for name, bound in bounds.items():
            if not isinstance(name, str):
                raise TypeError(
                    f"Expected parameter names to be of type str, but received {type(name)}."
                )

            if not isinstance(bound, Sequence) or len(bound) != 2:
                raise ValueError(
                    f"Bounds for parameter '{name}' must be a pair of real numbers."
                )

            low, high = bound
            validation.check_entries_real(
                bound, TypeError(f"Bounds for parameter '{name}' must be real numbers.")
            )
            validation.check_entries_finite(
                bound, ValueError(f"Bounds for parameter '{name}' must be finite.")
            )
            if not low < high:
                raise ValueError(
                    f"Lower bound for parameter '{name}' must be strictly less than the "
                    f"upper bound, but received ({low}, {high})."
                )

    @property
    def names(self) -> tuple[str, ...]:
        """(Read-only) The parameter names, in order."""
        return self._names

    @property
    def dim(self) -> int:
        """(Read-only) The number of parameters."""
        return len(self._names)

    @property
    def bounds(self) -> tuple[tuple[Real, Real], ...]:
        """(Read-only) The bounds, in the same order as `names`."""
        return tuple(self._bounds.values())

    @property
    def lower(self) -> NDArray:
        """(Read-only) The lower bounds as an array, in the order of `names`."""
        return self._lower.copy()

    @property
    def upper(self) -> NDArray:
        """(Read-only) The upper bounds as an array, in the order of `names`."""
        return self._upper.copy()

    @property
    def widths(self) -> NDArray:
        """(Read-only) The width of each interval, in the order of `names`."""
        return self._upper - self._lower

    def __getitem__(self, name: str) -> tuple[Real, Real]:
        return self._bounds[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, item: Any) -> bool:
        """Returns ``True`` when `item` is a parameter name of this range, or a `Point`
        with exactly this range's parameters whose coordinates lie within the bounds."""

        if isinstance(item, str):
            return item in self._bounds

        return (
            isinstance(item, Point)
            and item.names == self._names
            and bool(self.contains_array(item.to_array()[np.newaxis, :])[0])
        )

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, Range)
            and self._names == other._names
            and equal_within_tolerance(self._lower, other._lower)
            and equal_within_tolerance(self._upper, other._upper)
        )

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        return f"Range({self._bounds!r})"

    def contains_array(self, array: NDArray) -> NDArray:
        """Test row-wise whether an ``(N, dim)`` array of coordinates lies within the
        bounds, returning a boolean array of length ``N``."""

        array = np.atleast_2d(np.asarray(array, dtype=float))
        return np.all((array >= self._lower) & (array <= self._upper), axis=1)

    def scale(self, coordinates: Sequence[Real]) -> Point:
        """Scale coordinates from the unit hypercube into a point of this range.

        For each parameter with bounds ``a_i``, ``b_i`` the coordinate ``x_i`` is mapped
        to ``a_i + x_i * (b_i - a_i)``. Coordinates outside ``[0, 1]`` are transformed in
        the same way and so give points outside this range.

        Examples
        --------
        >>> rng = Range({"x": (0, 1), "y": (-0.5, 0.5), "z": (1, 11)})
        >>> rng.scale((0.5, 1, 0.7))
        Point(x=0.5, y=0.5, z=8.0)
        """

        if not len(coordinates) == self.dim:
            raise ValueError(
                f"Expected 'coordinates' to be a sequence of length {self.dim} but "
                f"received sequence of length {len(coordinates)}."
            )

        return Point.from_array(self.scale_array(np.asarray(coordinates))[0], self._names)

    def scale_array(self, unit: NDArray) -> NDArray:
        """Scale an ``(N, dim)`` array of unit hypercube coordinates into this range."""

        unit = np.atleast_2d(np.asarray(unit, dtype=float))
        if unit.shape[1] != self.dim:
            raise ValueError(
                f"Expected an array with {self.dim} columns, but received "
                f"{unit.shape[1]}."
            )

        return self._lower + unit * self.widths

    def validate_points(self, points: Iterable[Point]) -> None:
        """Check that every point has exactly this range's parameters, in order.

        Raises
        ------
        ConfigurationError
            If some point is not a `Point` or has a different parameter schema.
        """

        for i, point in enumerate(points):
            if not isinstance(point, Point):
                raise ConfigurationError(
                    f"Expected point {i} to be of type Point, but received {type(point)}."
                )

            if point.names != self._names:
                raise ConfigurationError(
                    f"Point {i} has parameters {point.names}, but the range defines "
                    f"parameters {self._names}."
                )

    def to_array(self, points: Sequence[Point]) -> NDArray:
        """Convert a sequence of points to an ``(N, dim)`` array, after checking their
        parameter schema with `validate_points`."""

        self.validate_points(points)
        if not points:
            return np.empty((0, self.dim), dtype=float)

        return np.array([point.coordinates for point in points], dtype=float)

    def to_points(self, array: NDArray) -> tuple[Point, ...]:
        """Convert an ``(N, dim)`` array into points labelled with this range's
        parameter names."""

        array = np.asarray(array, dtype=float).reshape(-1, self.dim)
        return tuple(Point.from_array(row, self._names) for row in array)

    def bounding_range(self, points: Sequence[Point], buffer: Real = 0.05) -> Range:
        """The smallest box containing the given points, widened on each side by
        `buffer` times the width of this range and clipped to this range.

        Parameters that take a single value among the points are widened by the
        buffer only, so that the returned range is always non-degenerate. This is
        used to focus proposals for a later wave on the region occupied by points
        found to be non-implausible in an earlier one.
        """

        validation.check_real(
            buffer,
            TypeError(f"Expected 'buffer' to be a real number, but received {type(buffer)}."),
        )
        if buffer < 0:
            raise ValueError(f"Expected 'buffer' to be non-negative, but received {buffer}.")

        if not points:
            return self

        array = self.to_array(points)
        pad = max(buffer, 1e-6) * self.widths
        lower = np.maximum(array.min(axis=0) - pad, self._lower)
        upper = np.minimum(array.max(axis=0) + pad, self._upper)
        return Range(
            {name: (float(lo), float(hi)) for name, lo, hi in zip(self._names, lower, upper)}
        )


@dataclasses.dataclass(frozen=True)
class Target:
    """An observation that a simulator output is calibrated against.

    A target is usually given by a central value together with the standard deviation
    of the observational uncertainty. Alternatively, a target can be defined by a
    range of acceptable values via `from_bounds`, in which case any prediction with a
    mean lying within the bounds is considered entirely plausible.

    Parameters
    ----------
    value : numbers.Real
        The observed value.
    sigma : numbers.Real
        The standard deviation of the observational uncertainty; must be non-negative.
    channel : str, optional
        (Default: None) The name of the simulator output the observation relates to.
    time : numbers.Real, optional
        (Default: None) The time at which the observation was made.
    bounds : tuple[numbers.Real, numbers.Real], optional
        (Default: None) Lower and upper bounds for a range-type target. Prefer
        `from_bounds` to supplying this directly.
    """

    value: Real
    sigma: Real
    channel: Optional[str] = None
    time: Optional[Real] = None
    bounds: Optional[tuple[Real, Real]] = None

    def __post_init__(self):
        for arg in ("value", "sigma"):
            validation.check_real(
                getattr(self, arg),
                TypeError(
                    f"Expected '{arg}' to be a real number, but received "
                    f"{type(getattr(self, arg))}."
                ),
            )
            validation.check_finite(
                getattr(self, arg), ValueError(f"Expected '{arg}' to be finite.")
            )

        if self.sigma < 0:
            raise ValueError(
                f"Expected 'sigma' to be non-negative, but received {self.sigma}."
            )

        if self.bounds is not None:
            lower, upper = self.bounds
            if not lower <= upper:
                raise ValueError(
                    f"Expected lower bound {lower} to be no greater than upper bound {upper}."
                )

    @classmethod
    def from_bounds(
        cls,
        lower: Real,
        upper: Real,
        channel: Optional[str] = None,
        time: Optional[Real] = None,
    ) -> Target:
        """Create a range-type target accepting any value between `lower` and `upper`.

        The central value is the midpoint of the bounds and `sigma` is a sixth of
        their width, so that the bounds sit three standard deviations either side of
        the value.
        """

        return cls(
            value=(lower + upper) / 2,
            sigma=(upper - lower) / 6,
            channel=channel,
            time=time,
            bounds=(lower, upper),
        )

    @property
    def is_range(self) -> bool:
        """Whether this target is defined by a range of acceptable values."""
        return self.bounds is not None


@dataclasses.dataclass(frozen=True)
class Prediction:
    """A predicted mean together with the variance of the prediction.

    Two predictions are considered equal if their means and variances agree, to
    within the standard tolerance ``hmatch.core.numerics.FLOAT_TOLERANCE``.

    Parameters
    ----------
    mean : numbers.Real
        The predicted mean.
    variance : numbers.Real
        The variance of the prediction; must be non-negative.

    Attributes
    ----------
    standard_deviation : float
        (Read-only) The square root of the variance.
    """

    mean: Real
    variance: Real
    standard_deviation: float = dataclasses.field(default=None, init=False)

    def __post_init__(self):
        validation.check_real(
            self.mean,
            TypeError(
                f"Expected 'mean' to define a real number, but received {type(self.mean)} "
                "instead."
            ),
        )
        validation.check_real(
            self.variance,
            TypeError(
                "Expected 'variance' to define a real number, but received "
                f"{type(self.variance)} instead."
            ),
        )
        if self.variance < 0:
            raise ValueError(
                f"'variance' must be a non-negative real number, but received {self.variance}."
            )

        object.__setattr__(self, "standard_deviation", math.sqrt(self.variance))

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return False

        return equal_within_tolerance(self.mean, other.mean) and equal_within_tolerance(
            self.variance, other.variance
        )


@dataclasses.dataclass(frozen=True)
class TrainingDatum:
    """A simulator run: a point in parameter space and the output observed there."""

    point: Point
    output: Real

    def __post_init__(self):
        if not isinstance(self.point, Point):
            raise TypeError("Argument 'point' must be of type Point")

        validation.check_real(
            self.output, TypeError("Argument 'output' must define a real number")
        )
        validation.check_finite(
            self.output, ValueError("Argument 'output' cannot be NaN or non-finite")
        )


class AbstractEmulator(abc.ABC):
    """Represents an emulator of one simulator output.

    An emulator is bound to a single target name and predicts the simulator output
    relating to that target at points in parameter space. How the emulator was
    trained is of no concern to the implausibility calculations, which only use
    `predict` and `discrepancy`.
    """

    @property
    @abc.abstractmethod
    def target(self) -> str:
        """(Read-only) The name of the target this emulator predicts."""
        raise NotImplementedError

    @property
    def discrepancy(self) -> Real:
        """(Read-only) Additional variance to include in implausibility calculations,
        accounting for model discrepancy or other emulator uncertainty not captured by
        the predictive variance. Defaults to zero."""
        return 0

    @abc.abstractmethod
    def predict(self, point: Point) -> Prediction:
        """Make a prediction of the simulator output at a point.

        Implementations should not raise for points lying in the range the emulator
        was trained on.

        Parameters
        ----------
        point : Point
            A point in parameter space.

        Returns
        -------
        Prediction
            The emulator's prediction of the simulator output at the point.
        """

        raise NotImplementedError


class EmulatorBank(dict[str, AbstractEmulator]):
    """A collection of emulators for a wave, as a mapping from target name to emulator.

    Each emulator must be bound to the target name it is stored under. The bank is
    meant to be treated as read-only once constructed.

    Parameters
    ----------
    emulators :
        Either a mapping of target names to emulators, or an iterable of emulators, in
        which case each is stored under its own `target` name.

    Examples
    --------
    >>> bank = EmulatorBank([em_infected, em_recovered])
    >>> bank.names
    ('I25', 'R25')
    """

    def __init__(
        self, emulators: Union[Mapping[str, AbstractEmulator], Iterable[AbstractEmulator]]
    ):
        if isinstance(emulators, Mapping):
            super().__init__(emulators)
        else:
            emulators = list(emulators)
            if not all(isinstance(em, AbstractEmulator) for em in emulators):
                raise TypeError(
                    "Expected an iterable of emulators to contain only objects of type "
                    "AbstractEmulator."
                )

            super().__init__((em.target, em) for em in emulators)
            if len(self) != len(emulators):
                raise ValueError("Found more than one emulator for the same target.")

        for name, em in self.items():
            if not isinstance(name, str):
                raise ValueError(
                    f"Key '{name}' of invalid type {type(name)} found: keys should be "
                    "target names."
                )

            if not isinstance(em, AbstractEmulator):
                raise TypeError(
                    f"Expected the emulator for target '{name}' to be of type "
                    f"AbstractEmulator, but received {type(em)}."
                )

            if em.target != name:
                raise ValueError(
                    f"Emulator stored under target '{name}' is bound to target "
                    f"'{em.target}'."
                )

    @property
    def names(self) -> tuple[str, ...]:
        """(Read-only) The target names covered by this bank, in insertion order."""
        return tuple(self.keys())

    def check_covers(self, targets: Mapping[str, Target]) -> None:
        """Check that the emulators cover exactly the given targets.

        Raises
        ------
        ConfigurationError
            If some target has no emulator, or some emulator has no target.
        """

        if missing := [name for name in targets if name not in self]:
            raise ConfigurationError(
                f"No emulator supplied for targets {', '.join(map(repr, missing))}."
            )

        if extra := [name for name in self if name not in targets]:
            raise ConfigurationError(
                f"Emulators supplied for unknown targets {', '.join(map(repr, extra))}."
            )

    def map(self, f: Callable[[str, AbstractEmulator], S]) -> dict[str, S]:
        """Apply a function to each (target name, emulator) pair, returning a dict of
        the results keyed by target name."""

        return {name: f(name, em) for name, em in self.items()}

    def __repr__(self):
        return f"{__class__.__name__}({super().__repr__()})"

    def __eq__(self, other):
        return isinstance(other, __class__) and super().__eq__(other)

    def __ne__(self, other):
        return not self == other
