"""
Emulators built upon the `mogp` package (https://github.com/alan-turing-institute/mogp-emulator).

How emulators are trained is of no concern to the implausibility calculations, which
only need an `AbstractEmulator` per target. This module provides a Gaussian process
emulator for users who do not bring their own, together with a helper that trains one
per target from a single design of simulator runs.
"""

from __future__ import annotations

import itertools
from collections.abc import Mapping, Sequence
from numbers import Real
from typing import Any, Optional
from warnings import warn

import mogp_emulator as mogp
import numpy as np
from mogp_emulator import GaussianProcess

import hmatch.utilities.validation as validation
from hmatch.core.modelling import (
    AbstractEmulator,
    EmulatorBank,
    Point,
    Prediction,
    Range,
    Target,
    TrainingDatum,
)
from hmatch.utilities.decorators import suppress_print


class MogpEmulator(AbstractEmulator):
    """
    An emulator of one simulator output, wrapping a ``GaussianProcess`` object from the
    mogp-emulator package.

    Parameters
    ----------
    target : str
        The name of the target this emulator predicts.
    domain : Range, optional
        (Default: None) If supplied, coordinates are scaled from this range into the
        unit hypercube before being passed to the Gaussian process, and points must
        have the range's parameters.
    discrepancy : numbers.Real, optional
        (Default: 0) Additional variance to include in implausibility calculations.
    **kwargs : dict
        Keyword arguments used to create each mogp-emulator ``GaussianProcess``, other
        than the inputs and targets. ``kernel`` must be one of ``"Matern52"``,
        ``"SquaredExponential"`` (the default) or ``"ProductMat52"``.

    Attributes
    ----------
    gp : mogp_emulator.GaussianProcess or None
        (Read-only) The underlying fitted Gaussian process, or ``None`` before fitting.
    training_data : tuple[TrainingDatum, ...]
        (Read-only) The data on which the emulator has been trained.

    Raises
    ------
    ValueError
        If the kernel supplied is not one of the supported kernel functions, or the
        discrepancy is negative.
    """

    _kernels = ("Matern52", "SquaredExponential", "ProductMat52")

    def __init__(
        self,
        target: str,
        domain: Optional[Range] = None,
        discrepancy: Real = 0,
        **kwargs: Any,
    ):
        if not isinstance(target, str):
            raise TypeError(
                f"Expected 'target' to be of type str, but received {type(target)} instead."
            )

        if domain is not None and not isinstance(domain, Range):
            raise TypeError(
                f"Expected 'domain' to be None or of type Range, but received {type(domain)} "
                "instead."
            )

        validation.check_real(
            discrepancy,
            TypeError(
                "Expected 'discrepancy' to be a real number, but received "
                f"{type(discrepancy)} instead."
            ),
        )
        if discrepancy < 0:
            raise ValueError(
                f"Expected 'discrepancy' to be non-negative, but received {discrepancy}."
            )

        if "kernel" in kwargs and kwargs["kernel"] not in self._kernels:
            raise ValueError(
                f"Could not initialise MogpEmulator with kernel = {kwargs['kernel']}: not "
                "a supported kernel function."
            )

        self._target = target
        self._domain = domain
        self._discrepancy = discrepancy
        self._gp_kwargs = {k: v for k, v in kwargs.items() if k not in ("inputs", "targets")}
        self._gp = None
        self._training_data = ()

    @property
    def target(self) -> str:
        return self._target

    @property
    def discrepancy(self) -> Real:
        return self._discrepancy

    @property
    def gp(self) -> Optional[GaussianProcess]:
        return self._gp

    @property
    def training_data(self) -> tuple[TrainingDatum, ...]:
        return self._training_data

    @suppress_print
    def fit(self, training_data: Sequence[TrainingDatum]) -> None:
        """Fit the emulator to data, estimating hyperparameters by maximising the
        log-posterior.

        Parameters
        ----------
        training_data : Sequence[TrainingDatum]
            The simulator runs to train on. Points must be distinct and share the same
            parameters.

        Raises
        ------
        ValueError
            If `training_data` is empty or contains duplicate points.
        """

        training_data = tuple(training_data)
        if not all(isinstance(datum, TrainingDatum) for datum in training_data):
            raise TypeError(
                "Expected 'training_data' to be a sequence of TrainingDatum objects."
            )

        if not training_data:
            raise ValueError("Cannot fit an emulator to an empty collection of data.")

        for datum1, datum2 in itertools.combinations(training_data, 2):
            if datum1.point == datum2.point:
                raise ValueError(
                    f"Points in training data must be distinct, but {datum1.point!r} "
                    "appears more than once."
                )

        inputs = np.array([self._coordinates(datum.point) for datum in training_data])
        outputs = np.array([datum.output for datum in training_data], dtype=float)
        self._gp = mogp.fit_GP_MAP(GaussianProcess(inputs, outputs, **self._gp_kwargs))
        self._training_data = training_data

        if len(training_data) < self._gp.n_params:
            warn(
                f"Fewer training points ({len(training_data)}) than hyperparameters "
                f"({self._gp.n_params}) being estimated for target '{self._target}'. "
                "Estimates may be unreliable."
            )

    def _coordinates(self, point: Point) -> np.ndarray:
        if self._domain is None:
            return point.to_array()

        self._domain.validate_points([point])
        return (point.to_array() - self._domain.lower) / self._domain.widths

    def predict(self, point: Point) -> Prediction:
        """Make a prediction of the simulator output at a point.

        Raises
        ------
        RuntimeError
            If this emulator has not been trained on any data before making the
            prediction.
        """

        if not isinstance(point, Point):
            raise TypeError(
                f"Expected 'point' to be of type Point, but received {type(point)} instead."
            )

        if self._gp is None:
            raise RuntimeError(
                "Cannot make prediction because emulator has not been trained on any data."
            )

        result = self._gp.predict(np.array([self._coordinates(point)]))

        # mogp can return tiny negative variances through rounding
        return Prediction(mean=float(result.mean[0]), variance=max(float(result.unc[0]), 0.0))


def build_emulator_bank(
    points: Sequence[Point],
    outputs: Mapping[str, Sequence[Real]],
    targets: Mapping[str, Target],
    domain: Optional[Range] = None,
    discrepancies: Optional[Mapping[str, Real]] = None,
    **kwargs: Any,
) -> EmulatorBank:
    """Train one `MogpEmulator` per target on a common design of simulator runs.

    Parameters
    ----------
    points : Sequence[Point]
        The design of points at which the simulator was run.
    outputs : Mapping[str, Sequence[numbers.Real]]
        For each target name, the simulator outputs at `points`, in the same order.
    targets : Mapping[str, Target]
        The targets to build emulators for.
    domain : Range, optional
        (Default: None) Passed to each `MogpEmulator`.
    discrepancies : Mapping[str, numbers.Real], optional
        (Default: None) Additional variance for the emulators of particular targets.
    **kwargs : dict
        Passed to each `MogpEmulator` for constructing its Gaussian process.

    Returns
    -------
    EmulatorBank
        A fitted emulator for each target, keyed by target name.

    Raises
    ------
    ValueError
        If there are no outputs for some target, or the number of outputs for a target
        differs from the number of points.
    """

    points = list(points)
    discrepancies = discrepancies or {}
    emulators = []
    for name in targets:
        try:
            values = list(outputs[name])
        except KeyError:
            raise ValueError(f"No simulator outputs supplied for target '{name}'.") from None

        if len(values) != len(points):
            raise ValueError(
                f"Expected {len(points)} outputs for target '{name}', but received "
                f"{len(values)}."
            )

        emulator = MogpEmulator(
            name, domain=domain, discrepancy=discrepancies.get(name, 0), **kwargs
        )
        emulator.fit([TrainingDatum(point, value) for point, value in zip(points, values)])
        emulators.append(emulator)

    return EmulatorBank(emulators)
