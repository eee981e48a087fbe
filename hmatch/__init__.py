"""
hmatch
==========================================================

The `hmatch` package implements the design-generation step of history matching: given
a bank of emulators, one per observed target, it finds points of parameter space that
are not ruled out as implausible and so should be simulated in the next wave.

Key Features
============
- **Implausibility scoring**: per-target implausibility with an n-th largest reduction
  across targets, optionally computed in a thread pool.
- **Pluggable accept measures**: compose structural constraints on raw coordinates
  (such as an ordering between parameters) with the statistical cutoff, or register
  entirely custom measures by name.
- **Design generation**: maximin Latin hypercube, importance, line and
  optimisation-seeded resampling under an explicit round and candidate budget.
- **Gaussian process emulators**: an adapter for `mogp_emulator` for users who do not
  bring their own emulators.

Subpackages
---------------------------------------------------------------------------------------------------------
- [`core`][hmatch.core]:
Data model, implausibility, accept measures, design generation and emulators.

- [`utilities`][hmatch.utilities]:
Argument validation, optimisation over ranges and other helpers.


References
---------------------------------------------------------------------------------------------------------
- `mogp_emulator`: <https://github.com/alan-turing-institute/mogp-emulator>
- Vernon, I., Goldstein, M. and Bower, R. G. (2010) "Galaxy formation: a Bayesian
  uncertainty analysis". DOI: <https://doi.org/10.1214/10-BA524>
- Iskauskas, A. et al. (2024) "hmer: an R package for Bayes linear emulation and
  history matching". DOI: <https://doi.org/10.18637/jss.v109.i10>
"""
