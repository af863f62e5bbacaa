"""Fluid solver, particles, force injection and resize handling."""
