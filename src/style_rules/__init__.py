"""Style rule catalog for style-fixer.

Rules are consumed by the pipeline only through the ``detect`` contract
(see :class:`src.fixer_shared.protocols.RuleDetector`).  Built-in rules
walk the Python AST; additional pattern rules are loaded from YAML
category files.
"""

__version__ = "1.0.0"
