"""
Module assembler.

Renders a small-business website scaffold (Express backend + React frontend)
from Jinja2 templates, choosing the feature modules by industry.
"""
