"""
config_loader.py — Load and merge the build diff configuration.

Configuration is resolved in this order (later overrides earlier):
1. Built-in defaults (defaults/config.yaml in the action repo)
2. Project config (.github/build-diff/config.yaml in the consuming repo)
3. Environment variable overrides

Credentials are loaded separately by load_credentials() so the pipeline
can refuse to start before any API call is made.
"""

import os
from pathlib import Path

import yaml

TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(Exception):
    """Fatal setup problem: the pipeline must not start."""


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base. Override wins for leaf values."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_flag(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in TRUTHY


def _read_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def load_config() -> dict:
    """Load configuration from defaults + project config + env overrides.

    Environment variables:
        BUILD_DIFF_CONFIG: Path to project config (relative to repo root)
        BUILD_DIFF_ACTION_PATH: Path to the action's own directory
        BUILD_DIFF_SNAPSHOT_FILE, BUILD_DIFF_MODE: setting overrides
        BUILD_DIFF_DRY_RUN: print the comment instead of posting it
        BUILD_DIFF_DEBUG / RUNNER_DEBUG: enable ::debug:: output
        GITHUB_STEP_SUMMARY: file the outcome summary is appended to
    """
    # 1. Load built-in defaults from the action repo
    action_path = Path(os.environ.get("BUILD_DIFF_ACTION_PATH", Path(__file__).parent.parent))
    defaults_path = action_path / "defaults" / "config.yaml"

    config = {}
    if defaults_path.exists():
        config = _read_yaml(defaults_path)

    # 2. Load project-specific config from the consuming repo
    repo_root = _find_repo_root()
    config_rel_path = os.environ.get("BUILD_DIFF_CONFIG", ".github/build-diff/config.yaml")
    project_config_path = repo_root / config_rel_path

    if project_config_path.exists():
        config = _deep_merge(config, _read_yaml(project_config_path))
        print(f"  Loaded project config from {config_rel_path}")
    else:
        print(f"  No project config at {config_rel_path} — using defaults")

    # 3. Apply environment variable overrides
    if os.environ.get("BUILD_DIFF_SNAPSHOT_FILE"):
        config.setdefault("build", {})["snapshot_filename"] = os.environ["BUILD_DIFF_SNAPSHOT_FILE"]
    if os.environ.get("BUILD_DIFF_MODE"):
        config.setdefault("diff", {})["mode"] = os.environ["BUILD_DIFF_MODE"]

    dry_run = _env_flag("BUILD_DIFF_DRY_RUN")
    if dry_run is not None:
        config.setdefault("run", {})["dry_run"] = dry_run

    # The runner sets RUNNER_DEBUG=1 when step debug logging is enabled
    debug = _env_flag("BUILD_DIFF_DEBUG")
    if debug is None:
        debug = _env_flag("RUNNER_DEBUG")
    if debug is not None:
        config.setdefault("run", {})["debug"] = debug

    # Markdown file the runner renders on the job page
    if os.environ.get("GITHUB_STEP_SUMMARY"):
        config.setdefault("run", {})["step_summary"] = os.environ["GITHUB_STEP_SUMMARY"]

    return config


def load_credentials() -> tuple[str, str]:
    """Return (token, "owner/repo") or raise ConfigurationError."""
    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if not token:
        raise ConfigurationError("Invalid GITHUB_TOKEN")
    repo = os.environ.get("GITHUB_REPOSITORY", "")
    if "/" not in repo:
        raise ConfigurationError(f"GITHUB_REPOSITORY must be 'owner/repo', got {repo!r}")
    return token, repo


def _find_repo_root() -> Path:
    """Find the Git repository root."""
    # In GitHub Actions, GITHUB_WORKSPACE is the repo root
    workspace = os.environ.get("GITHUB_WORKSPACE")
    if workspace:
        return Path(workspace)

    # Fall back to git rev-parse
    import subprocess
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode == 0:
            return Path(result.stdout.strip())
    except (OSError, subprocess.SubprocessError):
        pass

    # Last resort: current directory
    return Path.cwd()
