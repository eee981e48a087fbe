"""
hmatch.core
===========

-------------------------------------------------------------------------------------------
The hmatch core package contains the objects describing a wave of history matching
(points, ranges, targets and emulator predictions), the calculation of implausibility
from a bank of emulators, the accept measures that decide which candidate points are
retained, and the generation of designs of non-implausible points for the next wave.

-------------------------------------------------------------------------------------------
Modules
=========

[`designers`][hmatch.core.designers]:
    Iterative generation of designs of accepted points, with a choice of resampling
    strategies and an explicit budget.

[`emulators`][hmatch.core.emulators]:
    Gaussian process emulators built on `mogp_emulator`.

[`implausibility`][hmatch.core.implausibility]:
    Per-target implausibility scores and their reduction across targets.

[`measures`][hmatch.core.measures]:
    The accept measure interface, its default and constrained variants, and the
    registry of named measures.

[`modelling`][hmatch.core.modelling]:
    Points, ranges, targets, predictions and the abstract emulator interface.

[`numerics`][hmatch.core.numerics]:
    Numerical tolerance checks and array reductions.
"""
