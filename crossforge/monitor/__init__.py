"""Crossforge terminal rendering.

Modules
-------
renderer
    ``MatrixRenderer`` turns build jobs, matrix outcomes, job environments
    and harness reports into Rich tables and panels.
"""
