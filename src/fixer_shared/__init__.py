"""Shared models, protocols, constants, and utilities for style-fixer.

This package is the foundational layer for ``fix_orchestrator`` and
``style_rules``: everything that crosses a phase boundary (violations,
change descriptors, merged descriptors, apply results) is defined here.
"""

__version__ = "1.0.0"
