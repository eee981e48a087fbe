"""
hmatch.utilities
================

Helpers supporting the core package: argument validation, global optimisation
over a parameter range and small decorators.

[`validation`][hmatch.utilities.validation]:
    Checks for real, finite and integer arguments.

[`optimisation`][hmatch.utilities.optimisation]:
    Differential-evolution minimisation over a `Range`.

[`decorators`][hmatch.utilities.decorators]:
    Output suppression for chatty third-party fitting routines.
"""
