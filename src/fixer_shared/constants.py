"""Shared constants for the style-fixer pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Phase names
# ---------------------------------------------------------------------------
PHASE_DETECTION = "detection"
PHASE_MERGE = "merge"
PHASE_APPLY = "apply"

# ---------------------------------------------------------------------------
# Iteration controller states
# ---------------------------------------------------------------------------
STATE_SCANNING = "scanning"
STATE_REMEDIATING = "remediating"
STATE_DONE = "done"

# ---------------------------------------------------------------------------
# Terminal outcomes
# ---------------------------------------------------------------------------
OUTCOME_CONVERGED = "converged"
OUTCOME_BUDGET_EXHAUSTED = "budget_exhausted"
OUTCOME_INTERRUPTED = "interrupted"

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_CONCURRENT_RULES = 8
DEFAULT_MAX_CONCURRENT_FILES = 4
DEFAULT_MAX_TURNS = 20
DEFAULT_APPLY_TIMEOUT = 600  # 10 minutes per file

# ---------------------------------------------------------------------------
# Persistence layout
# ---------------------------------------------------------------------------
QUEUE_DIR = ".change-queue"
MERGED_SUBDIR = "merged"
DESCRIPTOR_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"
STATE_DIR = ".style-fixer"
STATE_FILE = "RUN_STATE.json"

# ---------------------------------------------------------------------------
# Remediation backend
# ---------------------------------------------------------------------------
CREDENTIAL_ENV_VAR = "ANTHROPIC_API_KEY"
BACKEND_CLAUDE = "claude"
BACKEND_PATCH = "patch"
ALL_BACKENDS = [BACKEND_CLAUDE, BACKEND_PATCH]

# Markers the remediation agent reports on completion.
MARKER_APPLIED = "CHANGES_APPLIED"
MARKER_FAILED = "CHANGES_FAILED"
