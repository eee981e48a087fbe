"""
Numerical helpers shared by the implausibility calculations, together with the
tolerance used when comparing real numbers.


Tolerance Control
---------------------------------------------------------------------------------------
[`FLOAT_TOLERANCE`][hmatch.core.numerics.FLOAT_TOLERANCE]
Global attribute of tolerance for the package

[`equal_within_tolerance`][hmatch.core.numerics.equal_within_tolerance]
Function to check equality of two real numbers up to a tolerance

[`set_tolerance`][hmatch.core.numerics.set_tolerance]
Function used to set global tolerance


Order Statistics and Distances
---------------------------------------------------------------------------------------
[`nth_largest`][hmatch.core.numerics.nth_largest]
Row-wise n-th largest entry of a matrix

[`standardised_distance`][hmatch.core.numerics.standardised_distance]
Absolute differences scaled by a standard deviation, safe at zero variance


"""

import math
from collections.abc import Sequence
from numbers import Real
from typing import Union

import numpy as np
from numpy.typing import NDArray

FLOAT_TOLERANCE = 1e-9
"""The default tolerance to use when testing for equality of real numbers."""


def equal_within_tolerance(
    x: Union[Real, Sequence[Real]],
    y: Union[Real, Sequence[Real]],
    rel_tol: Real = None,
    abs_tol: Real = None,
) -> bool:
    """Test equality of two real numbers or sequences of real numbers up to a tolerance.

    Parameters
    ----------
    x, y :
        Real numbers or sequences of real numbers to test equality of.
    rel_tol :
        The maximum allowed relative difference. Defaults to the current value of
        `FLOAT_TOLERANCE`.
    abs_tol :
        The minimum permitted absolute difference. Defaults to the current value of
        `FLOAT_TOLERANCE`.

    Returns
    -------
    bool
        Whether the two numbers or sequences of numbers are equal up to the relative
        and absolute tolerances.
    """
    rel_tol = FLOAT_TOLERANCE if rel_tol is None else rel_tol
    abs_tol = FLOAT_TOLERANCE if abs_tol is None else abs_tol

    if _is_seq(x) and _is_seq(y):
        return len(x) == len(y) and all(
            equal_within_tolerance(a, b, rel_tol=rel_tol, abs_tol=abs_tol)
            for a, b in zip(x, y)
        )
    elif isinstance(x, Real) and isinstance(y, Real):
        return math.isclose(x, y, rel_tol=rel_tol, abs_tol=abs_tol)
    else:
        raise TypeError(
            f"Both arguments must be of type {Real}, sequences of reals or Numpy arrays, "
            f"but received types {type(x)} and {type(y)}."
        )


def _is_seq(x) -> bool:
    return isinstance(x, (Sequence, np.ndarray))


def set_tolerance(tol: float):
    """Set the global `FLOAT_TOLERANCE` to a new non-negative value."""

    if not isinstance(tol, float):
        raise TypeError(
            f"Expected 'tol' to be of type float, but received {type(tol)} instead."
        )

    if tol < 0:
        raise ValueError(f"Expected 'tol' to be non-negative but received {tol}.")

    global FLOAT_TOLERANCE
    FLOAT_TOLERANCE = tol


def nth_largest(matrix: NDArray, n: int) -> NDArray:
    """Select the n-th largest entry from each row of a 2-dimensional array.

    ``n = 1`` gives the row maximum, ``n = 2`` the second-largest entry and so on.
    If `n` exceeds the number of columns then it is clamped, so that the smallest
    entry of each row is returned.

    Parameters
    ----------
    matrix : numpy.ndarray
        An array of shape ``(N, M)``. ``M`` must be at least 1 unless ``N`` is zero.
    n : int
        A positive integer selecting the order statistic.

    Returns
    -------
    numpy.ndarray
        A 1-dimensional array of length ``N``.

    Examples
    --------
    >>> nth_largest(np.array([[1.0, 4.0, 2.0], [0.5, 0.1, 0.2]]), 2)
    array([2. , 0.2])
    """

    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2:
        raise ValueError(
            f"Expected 'matrix' to be 2-dimensional, but it has {matrix.ndim} dimensions."
        )

    if matrix.shape[0] == 0:
        return np.empty(0, dtype=float)

    if matrix.shape[1] == 0:
        raise ValueError("Cannot select an order statistic from rows with no entries.")

    idx = min(n, matrix.shape[1]) - 1
    descending = -np.sort(-matrix, axis=1)
    return descending[:, idx]


def standardised_distance(diff: NDArray, variance: NDArray) -> NDArray:
    """Compute ``|diff| / sqrt(variance)`` element-wise.

    Where the variance is exactly zero the distance is defined to be zero if the
    difference is also exactly zero and ``inf`` otherwise.
    """

    diff = np.abs(np.asarray(diff, dtype=float))
    variance = np.asarray(variance, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        dist = diff / np.sqrt(variance)

    zero_var = variance == 0
    return np.where(zero_var, np.where(diff == 0, 0.0, np.inf), dist)
