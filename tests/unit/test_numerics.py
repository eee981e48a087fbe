import itertools
import math
import unittest

import numpy as np

import hmatch.core.numerics as numerics
from hmatch.core.numerics import (
    FLOAT_TOLERANCE,
    equal_within_tolerance,
    nth_largest,
    set_tolerance,
    standardised_distance,
)
from tests.utilities.utilities import exact, make_window


class TestEqualWithinTolerance(unittest.TestCase):
    def assertAgreeOnRange(self, func1, func2, _range):
        for x in _range:
            self.assertIs(func1(x), func2(x))

    def test_equal_to_math_isclose_relative_tolerances(self):
        """Test that whether two reals are equal up to a relative tolerance agrees with
        the calculation given by math.isclose."""

        for x, rel_tol in itertools.product([-1, 1], [1e-1, 1e-2, 1e-3]):
            with self.subTest(x=x, rel_tol=rel_tol):
                self.assertAgreeOnRange(
                    lambda y: equal_within_tolerance(x, y, rel_tol=rel_tol, abs_tol=0),
                    lambda y: math.isclose(x, y, rel_tol=rel_tol, abs_tol=0),
                    _range=make_window(x, 2 * rel_tol, type="rel"),
                )

    def test_default_tolerances(self):
        """Test that the default tolerance is the package's float tolerance constant."""

        x = 1
        self.assertAgreeOnRange(
            lambda y: equal_within_tolerance(x, y),
            lambda y: math.isclose(x, y, rel_tol=FLOAT_TOLERANCE, abs_tol=FLOAT_TOLERANCE),
            _range=make_window(x, 2 * FLOAT_TOLERANCE, type="rel"),
        )

    def test_sequences_compared_elementwise(self):
        """Test that sequences and arrays are equal when they have the same length and
        their elements agree up to tolerance."""

        self.assertTrue(equal_within_tolerance([1, 2], (1, 2 + 1e-12)))
        self.assertTrue(equal_within_tolerance(np.array([0.5, 0.25]), [0.5, 0.25]))
        self.assertFalse(equal_within_tolerance([1, 2], [1, 2, 3]))
        self.assertFalse(equal_within_tolerance([1, 2], [1, 2.1]))

    def test_type_error_for_non_real_arguments(self):
        """Test that a TypeError is raised if the arguments are not reals or sequences
        of reals."""

        with self.assertRaises(TypeError):
            equal_within_tolerance("a", 1)


class TestSetTolerance(unittest.TestCase):
    def tearDown(self) -> None:
        set_tolerance(1e-9)

    def test_set_tolerance_changes_global(self):
        """Test that the global tolerance is updated."""

        set_tolerance(1e-3)
        self.assertEqual(numerics.FLOAT_TOLERANCE, 1e-3)
        self.assertTrue(equal_within_tolerance(1, 1.0005))

    def test_invalid_tolerance(self):
        """Test that a TypeError is raised for non-floats and a ValueError for negative
        tolerances."""

        with self.assertRaisesRegex(
            TypeError,
            exact("Expected 'tol' to be of type float, but received <class 'int'> instead."),
        ):
            set_tolerance(1)

        with self.assertRaises(ValueError):
            set_tolerance(-0.1)


class TestNthLargest(unittest.TestCase):
    def setUp(self) -> None:
        self.matrix = np.array([[1.0, 4.0, 2.0], [0.5, 0.1, 0.2], [3.0, 3.0, 0.0]])

    def test_order_statistics(self):
        """Test that n = 1, 2, 3 select the largest, second-largest and smallest entries
        of each row."""

        expected = {
            1: [4.0, 0.5, 3.0],
            2: [2.0, 0.2, 3.0],
            3: [1.0, 0.1, 0.0],
        }
        for n, values in expected.items():
            with self.subTest(n=n):
                np.testing.assert_array_equal(nth_largest(self.matrix, n), values)

    def test_n_clamped_to_number_of_columns(self):
        """Test that values of n beyond the number of columns select the smallest entry
        of each row."""

        for n in [4, 10]:
            with self.subTest(n=n):
                np.testing.assert_array_equal(
                    nth_largest(self.matrix, n), self.matrix.min(axis=1)
                )

    def test_non_increasing_in_n(self):
        """Test that the selected value never increases as n increases."""

        matrix = np.random.default_rng(3).random((20, 5))
        previous = nth_largest(matrix, 1)
        for n in range(2, 7):
            current = nth_largest(matrix, n)
            self.assertTrue(np.all(current <= previous))
            previous = current

    def test_empty_rows(self):
        """Test that a matrix with no rows gives an empty result."""

        self.assertEqual(nth_largest(np.empty((0, 3)), 2).shape, (0,))

    def test_no_columns_error(self):
        """Test that a ValueError is raised if rows have no entries."""

        with self.assertRaises(ValueError):
            nth_largest(np.empty((2, 0)), 1)

    def test_not_two_dimensional_error(self):
        """Test that a ValueError is raised for arrays that aren't 2-dimensional."""

        with self.assertRaises(ValueError):
            nth_largest(np.array([1.0, 2.0]), 1)


class TestStandardisedDistance(unittest.TestCase):
    def test_scaled_absolute_difference(self):
        """Test that the absolute difference is divided by the standard deviation."""

        np.testing.assert_allclose(
            standardised_distance([-2.0, 3.0], [4.0, 9.0]), [1.0, 1.0]
        )

    def test_zero_variance(self):
        """Test that zero variance gives zero distance for zero difference and
        infinite distance otherwise."""

        dist = standardised_distance([0.0, 0.1], [0.0, 0.0])
        self.assertEqual(dist[0], 0.0)
        self.assertEqual(dist[1], math.inf)


if __name__ == "__main__":
    unittest.main()
