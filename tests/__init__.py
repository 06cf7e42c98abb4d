"""Test package for the symmetry trainer.

Engine, scoring and persistence tests drive time through a fake clock and
never touch the display. The pygame smoke tests use SDL's dummy video driver
so no real window is opened. Run ``pytest`` from the project root.
"""
