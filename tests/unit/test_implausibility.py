import math
import unittest

import numpy as np

from hmatch.core.implausibility import (
    EmulatorPredictionError,
    ImplausibilityEvaluator,
    check_schema,
    nth_implausibility,
    target_implausibility,
    validate_reduction_args,
)
from hmatch.core.modelling import ConfigurationError, EmulatorBank, Point, Prediction, Target
from tests.unit.fakes import (
    BadEmulator,
    ConstantEmulator,
    FailingEmulator,
    LinearEmulator,
    SpyEmulator,
    uniform_points,
)
from tests.utilities.utilities import HmatchTestCase, exact


class TestTargetImplausibility(HmatchTestCase):
    def test_standard_formula(self):
        """Test that the implausibility is the absolute difference between prediction
        and observation over the square root of the total variance."""

        target = Target(value=10, sigma=2)
        prediction = Prediction(mean=4, variance=3)
        self.assertEqualWithinTolerance(
            target_implausibility(target, prediction, discrepancy=4), 6 / math.sqrt(11)
        )

    def test_zero_total_variance(self):
        """Test that zero total variance gives zero for an exact match and infinity
        otherwise."""

        self.assertEqual(target_implausibility(Target(1, 0), Prediction(1, 0), 0), 0)
        self.assertEqual(target_implausibility(Target(1, 0), Prediction(2, 0), 0), math.inf)

    def test_range_target(self):
        """Test that a range target scores zero inside its bounds and the distance to
        the nearer bound, scaled by the emulator uncertainty alone, outside them."""

        target = Target.from_bounds(10, 20)
        self.assertEqual(target_implausibility(target, Prediction(12, 1), 0), 0)
        self.assertEqualWithinTolerance(
            target_implausibility(target, Prediction(23, 1), 3), 1.5
        )
        self.assertEqualWithinTolerance(
            target_implausibility(target, Prediction(8, 4), 0), 1.0
        )


class TestValidateReductionArgs(unittest.TestCase):
    def test_invalid_n(self):
        for n in [0, -1, 1.5, True]:
            with self.subTest(n=n):
                with self.assertRaises(ConfigurationError):
                    validate_reduction_args(n, 3)

    def test_invalid_cutoff(self):
        for cutoff in [-0.1, math.nan, "3", None]:
            with self.subTest(cutoff=cutoff):
                with self.assertRaises(ConfigurationError):
                    validate_reduction_args(1, cutoff)

    def test_valid_arguments(self):
        validate_reduction_args(2, 0)
        validate_reduction_args(1, math.inf)


class TestCheckSchema(unittest.TestCase):
    def setUp(self) -> None:
        self.bank = EmulatorBank([ConstantEmulator("a", 0), ConstantEmulator("b", 0)])
        self.targets = {"a": Target(0, 1), "b": Target(0, 1)}

    def test_returns_bank(self):
        bank = check_schema(dict(self.bank), [Point(x=0)], self.targets)
        self.assertIsInstance(bank, EmulatorBank)

    def test_target_without_emulator(self):
        with self.assertRaisesRegex(
            ConfigurationError, exact("No emulator supplied for targets 'c'.")
        ):
            check_schema(self.bank, [], dict(self.targets, c=Target(0, 1)))

    def test_invalid_targets(self):
        for targets in [{}, [Target(0, 1)], {"a": 1.0, "b": Target(0, 1)}]:
            with self.subTest(targets=targets):
                with self.assertRaises(ConfigurationError):
                    check_schema(self.bank, [], targets)

    def test_invalid_emulators(self):
        with self.assertRaises(ConfigurationError):
            check_schema({"a": ConstantEmulator("b", 0)}, [], {"a": Target(0, 1)})

    def test_mismatched_point_schema(self):
        with self.assertRaisesRegex(
            ConfigurationError,
            exact(
                "Point 1 has parameters ('x', 'z'), which differ from the parameters "
                "('x', 'y') of the first point."
            ),
        ):
            check_schema(self.bank, [Point(x=0, y=0), Point(x=0, z=0)], self.targets)

        with self.assertRaises(ConfigurationError):
            check_schema(self.bank, [Point(x=0), (0,)], self.targets)


class TestImplausibilityEvaluator(HmatchTestCase):
    def setUp(self) -> None:
        self.evaluator = ImplausibilityEvaluator()
        self.bank = EmulatorBank(
            [
                LinearEmulator("a", {"x": 1}, variance=0.01),
                LinearEmulator("b", {"y": 1}, variance=0.04),
                LinearEmulator("c", {"x": 1, "y": 1}, discrepancy=0.01),
            ]
        )
        self.targets = {
            "a": Target(0.5, 0.1),
            "b": Target(0.2, 0.2),
            "c": Target(1.0, 0.1),
        }
        self.points = uniform_points(["x", "y"], 30)

    def independent_scores(self, points, targets=None):
        """Per-target implausibilities recomputed directly from the emulators."""

        targets = self.targets if targets is None else targets
        scores = []
        for point in points:
            row = []
            for name, target in targets.items():
                em = self.bank[name]
                pred = em.predict(point)
                total_var = pred.variance + em.discrepancy + target.sigma**2
                row.append(abs(pred.mean - target.value) / math.sqrt(total_var))

            scores.append(row)

        return np.array(scores)

    def test_matrix_matches_formula(self):
        """Test that each entry of the implausibility matrix is given by the standard
        implausibility formula, with columns in target order."""

        matrix = self.evaluator.implausibility_matrix(self.bank, self.points, self.targets)
        self.assertEqual(matrix.shape, (30, 3))
        np.testing.assert_allclose(matrix, self.independent_scores(self.points))

    def test_columns_follow_target_order(self):
        targets = {name: self.targets[name] for name in ["c", "a", "b"]}
        matrix = self.evaluator.implausibility_matrix(self.bank, self.points, targets)
        np.testing.assert_allclose(matrix, self.independent_scores(self.points, targets))

    def test_boolean_outcome_equals_score_within_cutoff(self):
        """Test that the boolean outcome agrees with comparing the n-th largest
        implausibility, recomputed independently, with the cutoff."""

        scores = self.independent_scores(self.points)
        for n in [1, 2, 3]:
            for cutoff in [1.0, 3.0]:
                with self.subTest(n=n, cutoff=cutoff):
                    expected = -np.sort(-scores, axis=1)[:, n - 1] <= cutoff
                    outcome = self.evaluator.evaluate(
                        self.bank, self.points, self.targets, n=n, cutoff=cutoff
                    )
                    self.assertEqual(outcome.dtype, bool)
                    self.assertArrayEqual(outcome, expected)

    def test_scores_mode(self):
        """Test that the aggregated scores are returned when requested."""

        scores = self.independent_scores(self.points)
        aggregated = self.evaluator.evaluate(
            self.bank, self.points, self.targets, n=2, return_scores=True
        )
        np.testing.assert_allclose(aggregated, -np.sort(-scores, axis=1)[:, 1])

    def test_scores_non_increasing_in_n(self):
        previous = None
        for n in range(1, 6):
            current = nth_implausibility(self.bank, self.points, self.targets, n=n)
            if previous is not None:
                self.assertTrue(np.all(current <= previous))

            previous = current

    def test_empty_points(self):
        """Test that an empty batch gives an empty outcome in both modes."""

        self.assertEqual(self.evaluator.evaluate(self.bank, [], self.targets).shape, (0,))
        self.assertEqual(
            self.evaluator.evaluate(self.bank, [], self.targets, return_scores=True).shape,
            (0,),
        )

    def test_permutation_equivariance(self):
        """Test that permuting the points permutes the outcome identically."""

        perm = np.random.default_rng(1).permutation(len(self.points))
        outcome = self.evaluator.evaluate(self.bank, self.points, self.targets, n=2)
        permuted = self.evaluator.evaluate(
            self.bank, [self.points[i] for i in perm], self.targets, n=2
        )
        self.assertArrayEqual(permuted, outcome[perm])

    def test_rescoring_is_idempotent(self):
        """Test that re-scoring accepted points reproduces the same outcomes."""

        outcome = self.evaluator.evaluate(self.bank, self.points, self.targets, cutoff=3)
        accepted = [p for p, ok in zip(self.points, outcome) if ok]
        self.assertTrue(
            np.all(self.evaluator.evaluate(self.bank, accepted, self.targets, cutoff=3))
        )
        self.assertArrayEqual(
            self.evaluator.evaluate(self.bank, self.points, self.targets, cutoff=3), outcome
        )

    def test_parallel_agrees_with_sequential(self):
        """Test that scoring in a thread pool writes results back in point order."""

        parallel = ImplausibilityEvaluator(max_workers=4, chunk_size=7)
        np.testing.assert_array_equal(
            parallel.implausibility_matrix(self.bank, self.points, self.targets),
            self.evaluator.implausibility_matrix(self.bank, self.points, self.targets),
        )

    def test_each_point_predicted_once_per_target(self):
        spies = EmulatorBank([SpyEmulator(em) for em in self.bank.values()])
        ImplausibilityEvaluator(max_workers=3, chunk_size=4).evaluate(
            spies, self.points, self.targets
        )
        for spy in spies.values():
            self.assertEqual(spy.calls, len(self.points))

    def test_schema_errors_raised_before_scoring(self):
        """Test that a configuration error is raised, without any predictions being
        made, when a target has no emulator."""

        spy = SpyEmulator(self.bank["a"])
        with self.assertRaises(ConfigurationError):
            self.evaluator.evaluate({"a": spy}, self.points, self.targets)

        self.assertEqual(spy.calls, 0)

    def test_invalid_reduction_args(self):
        with self.assertRaises(ConfigurationError):
            self.evaluator.evaluate(self.bank, self.points, self.targets, n=0)

        with self.assertRaises(ConfigurationError):
            self.evaluator.evaluate(self.bank, self.points, self.targets, cutoff=-1)

    def test_prediction_failure_tagged_with_point_and_target(self):
        """Test that emulator failures propagate as EmulatorPredictionError carrying the
        point and target name, with the original error as the cause."""

        bad_point = self.points[4]
        error = ValueError("outside domain")
        bank = EmulatorBank(
            [
                self.bank["a"],
                FailingEmulator("b", fail_at=[bad_point], error=error),
                self.bank["c"],
            ]
        )
        for evaluator in [self.evaluator, ImplausibilityEvaluator(max_workers=2, chunk_size=5)]:
            with self.subTest(max_workers=evaluator.max_workers):
                with self.assertRaises(EmulatorPredictionError) as cm:
                    evaluator.evaluate(bank, self.points, self.targets)

                self.assertEqual(cm.exception.point, bad_point)
                self.assertEqual(cm.exception.target, "b")
                self.assertIs(cm.exception.__cause__, error)

    def test_non_prediction_result_error(self):
        bank = EmulatorBank([BadEmulator("a")])
        with self.assertRaises(EmulatorPredictionError):
            self.evaluator.evaluate(bank, self.points[:1], {"a": Target(0, 1)})

    def test_invalid_construction(self):
        with self.assertRaises(ValueError):
            ImplausibilityEvaluator(max_workers=0)

        with self.assertRaises(TypeError):
            ImplausibilityEvaluator(chunk_size=2.0)

    def test_zero_variance_targets(self):
        """Test that an exact match with no uncertainty is accepted and any other
        prediction rejected."""

        bank = EmulatorBank([ConstantEmulator("a", 1.0)])
        outcome = self.evaluator.evaluate(bank, self.points[:2], {"a": Target(1.0, 0)})
        self.assertArrayEqual(outcome, [True, True])
        outcome = self.evaluator.evaluate(bank, self.points[:2], {"a": Target(1.1, 0)})
        self.assertArrayEqual(outcome, [False, False])


if __name__ == "__main__":
    unittest.main()
