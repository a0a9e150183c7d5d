"""
Test suite for the approximate FABIA engine.

Covers the posterior estimator, the M-step kernels, the parallel E-step and
its reduction, the EM driver's failure paths, and the estimator and CLI
surfaces built on top of them.
"""
