from typing import Callable, Union

import numpy as np
import scipy.optimize
from numpy.typing import NDArray

import hmatch.core.numerics as numerics
from hmatch.core.modelling import Point, Range


def minimise(
    func: Callable[[NDArray], NDArray],
    domain: Range,
    seed: Union[int, np.random.Generator, None] = None,
    maxiter: int = 1000,
    strict: bool = True,
    popsize: int = 15,
) -> tuple[Point, float]:
    """Minimise a vectorised objective function over a parameter range.

    Finds a point in the range that minimises `func`, together with the minimum
    value, using differential evolution as implemented in Scipy, with the bounds of
    the supplied range. The objective is evaluated on whole populations at once: it
    receives an ``(N, dim)`` array of coordinates, in the order of ``domain.names``,
    and must return ``N`` real values. Values may be ``inf``, which is useful for
    marking regions that are to be avoided entirely.

    Parameters
    ----------
    func : Callable[[numpy.ndarray], numpy.ndarray]
        The vectorised objective function to minimise.
    domain : Range
        The range over which `func` will be minimised.
    seed : int or numpy.random.Generator, optional
        (Default: None) Seed or generator for the random number generation used in
        the optimisation. If ``None`` then no seeding will be used.
    maxiter : int, optional
        (Default: 1000) The maximum number of generations of differential evolution.
    strict : bool, optional
        (Default: True) Whether to raise an error if the optimisation did not converge
        within `maxiter` generations. If ``False``, the best point found is returned
        regardless.
    popsize : int, optional
        (Default: 15) Multiplier for the population size: each generation evaluates
        ``popsize * domain.dim`` points, as does the initial population.

    Returns
    -------
    tuple[Point, float]
        A pair ``(x, val)``, where ``x`` is the point of the range that minimises the
        objective function and ``val`` is the minimum value found.

    Raises
    ------
    RuntimeError
        If finding the minimum failed for some reason (e.g. due to non-convergence,
        when `strict` is ``True``).

    See Also
    --------
    The Scipy documentation for differential evolution optimisation:
    https://docs.scipy.org/doc/scipy/reference/generated/scipy.optimize.differential_evolution.html
    This is used with the `tol` and `atol` keyword arguments set to
    ``hmatch.core.numerics.FLOAT_TOLERANCE``.
    """

    if not isinstance(domain, Range):
        raise TypeError(
            f"Expected 'domain' to be of type Range, but received {type(domain)} instead."
        )

    if seed is not None and not isinstance(seed, (int, np.random.Generator)):
        raise TypeError(
            "Random seed must be an integer or numpy.random.Generator, but received "
            f"type {type(seed)}."
        )

    def objective(x: NDArray) -> NDArray:
        # Scipy supplies populations with shape (dim, S) when vectorised
        values = np.asarray(func(np.atleast_2d(x.T)), dtype=float).reshape(-1)
        return np.where(np.isnan(values), np.inf, values)

    try:
        result = scipy.optimize.differential_evolution(
            objective,
            bounds=list(zip(domain.lower, domain.upper)),
            tol=numerics.FLOAT_TOLERANCE,
            atol=numerics.FLOAT_TOLERANCE,
            maxiter=maxiter,
            popsize=popsize,
            rng=seed,
            vectorized=True,
            updating="deferred",
            polish=False,
        )
    except Exception as e:
        raise RuntimeError(f"Minimisation failed: {str(e)}") from e

    if strict and not result.success:
        raise RuntimeError(f"Minimisation failed to converge: {result.message}")

    return Point.from_array(np.asarray(result.x, dtype=float), domain.names), float(
        result.fun
    )

