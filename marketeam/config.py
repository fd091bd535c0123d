"""Configuration loading and defaults.

Reads from config.toml at the project root, with environment variable overrides.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from marketeam.models import Priority

# Look for .env in the package's parent directory (project root)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")
load_dotenv()  # also check cwd

# ---------------------------------------------------------------------------
# Load config.toml
# ---------------------------------------------------------------------------

_toml_path = _project_root / "config.toml"
_cfg: dict = {}
if _toml_path.exists():
    with open(_toml_path, "rb") as f:
        _cfg = tomllib.load(f)

_server = _cfg.get("server", {})
_director = _cfg.get("director", {})
_budget = _cfg.get("budget", {})

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

WORKSPACE_DIR = Path(os.getenv("MARKETEAM_WORKSPACE", _director.get("workspace", str(Path.cwd() / "workspace"))))
SKILLS_FILE = os.getenv("MARKETEAM_SKILLS_FILE", _director.get("skills_file", "")) or None

# ---------------------------------------------------------------------------
# Provider API keys (env-only, never in toml)
# ---------------------------------------------------------------------------

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")

# ---------------------------------------------------------------------------
# Director defaults
# ---------------------------------------------------------------------------

MAX_REVISIONS_PER_TASK = int(os.getenv("MARKETEAM_MAX_REVISIONS", _director.get("max_revisions_per_task", 3)))
MAX_ITERATIONS_PER_GOAL = int(os.getenv("MARKETEAM_MAX_ITERATIONS", _director.get("max_iterations_per_goal", 3)))
DEFAULT_PRIORITY = Priority(os.getenv("MARKETEAM_DEFAULT_PRIORITY", _director.get("default_priority", "P2")))
MAX_CONCURRENT_WORKERS = int(os.getenv("MARKETEAM_MAX_WORKERS", _director.get("max_workers", 3)))
MODEL_TIMEOUT_MS = int(os.getenv("MARKETEAM_MODEL_TIMEOUT_MS", _director.get("model_timeout_ms", 120000)))
HUMAN_REVIEW_EXPIRY_HOURS = float(os.getenv("MARKETEAM_HUMAN_REVIEW_EXPIRY_HOURS", _director.get("human_review_expiry_hours", 72)))

# ---------------------------------------------------------------------------
# Budget (monthly, in dollars; thresholds are percent of the total)
# ---------------------------------------------------------------------------

MONTHLY_BUDGET = float(os.getenv("MARKETEAM_MONTHLY_BUDGET", _budget.get("total_monthly", 1000)))
BUDGET_WARNING_AT = float(os.getenv("MARKETEAM_BUDGET_WARNING", _budget.get("warning_at", 80)))
BUDGET_THROTTLE_AT = float(os.getenv("MARKETEAM_BUDGET_THROTTLE", _budget.get("throttle_at", 90)))
BUDGET_CRITICAL_AT = float(os.getenv("MARKETEAM_BUDGET_CRITICAL", _budget.get("critical_at", 95)))

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

SERVER_HOST = os.getenv("MARKETEAM_HOST", _server.get("host", "0.0.0.0"))
SERVER_PORT = int(os.getenv("MARKETEAM_PORT", _server.get("port", 8000)))


@dataclass
class BudgetConfig:
    total_monthly: float = 1000.0
    warning_at: float = 80.0
    throttle_at: float = 90.0
    critical_at: float = 95.0


@dataclass
class DirectorConfig:
    """Numbers the decision engine runs on. Tests build these directly."""

    max_revisions_per_task: int = 3
    max_iterations_per_goal: int = 3
    default_priority: Priority = Priority.P2
    budget: BudgetConfig = field(default_factory=BudgetConfig)

    @classmethod
    def from_settings(cls) -> DirectorConfig:
        return cls(
            max_revisions_per_task=MAX_REVISIONS_PER_TASK,
            max_iterations_per_goal=MAX_ITERATIONS_PER_GOAL,
            default_priority=DEFAULT_PRIORITY,
            budget=BudgetConfig(
                total_monthly=MONTHLY_BUDGET,
                warning_at=BUDGET_WARNING_AT,
                throttle_at=BUDGET_THROTTLE_AT,
                critical_at=BUDGET_CRITICAL_AT,
            ),
        )
