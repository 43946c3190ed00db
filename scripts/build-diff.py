#!/usr/bin/env python3
"""
build-diff.py — Comment the string table diff of a newly pushed build on its commit.

On each push it:
1. Checks the head commit adds exactly one file named like a build
   (/YYYY/YYYY-MM-DD/<hash>.js or /YYYY/MM/DD/<hash>.js)
2. Finds the snapshot file (current.js) at the root of the pre-push tree
3. Diffs the string tables of the snapshot and the new build
4. Posts the diff as a commit comment, or logs why nothing was posted

Every stage returns an Outcome; the first one that is not a pass-through
decides the single action taken by report().
"""

import json
import os
import re
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config_loader import ConfigurationError, load_config, load_credentials
from github_api import GitHubClient, decode_blob
from string_differ import diff_strings

DEFAULT_PATH_PATTERN = r"/\d{4}/(?:\d{4}-\d{2}-\d{2}|\d{2}/\d{2})/[a-z0-9]{20,}\.js$"
DEFAULT_SNAPSHOT_FILENAME = "current.js"
DEFAULT_DIFF_MODE = "codeblock"

NOT_APPLICABLE = "not_applicable"
NO_CHANGE = "no_change"
READY = "ready"
FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    kind: str
    detail: str = ""

    @classmethod
    def not_applicable(cls, reason: str) -> "Outcome":
        return cls(NOT_APPLICABLE, reason)

    @classmethod
    def no_change(cls) -> "Outcome":
        return cls(NO_CHANGE)

    @classmethod
    def ready(cls, diff_text: str) -> "Outcome":
        return cls(READY, diff_text)

    @classmethod
    def failed(cls, cause: str) -> "Outcome":
        return cls(FAILED, cause)


# ---------------------------------------------------------------------------
# Logging (GitHub Actions workflow commands)
# ---------------------------------------------------------------------------

def _escape_command_data(message: str) -> str:
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def log_debug(message: str, config: dict):
    if config.get("run", {}).get("debug"):
        print(f"::debug::{_escape_command_data(message)}")


def log_error(message: str):
    print(f"::error::{_escape_command_data(message)}")


def write_step_summary(line: str, config: dict):
    summary_file = config.get("run", {}).get("step_summary")
    if not summary_file:
        return
    try:
        with open(summary_file, "a") as f:
            f.write("\n## Build Diff\n\n")
            f.write(f"- {line}\n")
    except OSError as e:
        print(f"  Warning: Could not write step summary: {e}")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def get_path_pattern(config: dict) -> re.Pattern:
    pattern = config.get("build", {}).get("path_pattern") or DEFAULT_PATH_PATTERN
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(f"invalid build.path_pattern {pattern!r}: {e}") from e


def get_snapshot_filename(config: dict) -> str:
    return config.get("build", {}).get("snapshot_filename") or DEFAULT_SNAPSHOT_FILENAME


def get_diff_mode(config: dict) -> str:
    return config.get("diff", {}).get("mode") or DEFAULT_DIFF_MODE


def load_push_event() -> tuple[str, dict]:
    """Return (event name, payload) from the runner environment."""
    event_name = os.environ.get("GITHUB_EVENT_NAME", "")
    event_path = os.environ.get("GITHUB_EVENT_PATH", "")
    if event_name != "push":
        return event_name, {}
    if not event_path:
        raise ConfigurationError("GITHUB_EVENT_PATH not set")
    try:
        payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"unable to read event payload {event_path}: {e}") from e
    if not payload.get("after") or not payload.get("before"):
        raise ConfigurationError("push payload is missing 'before' or 'after'")
    return event_name, payload


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------

def classify_commit(commit: dict, path_pattern: re.Pattern) -> tuple[dict | None, str | None]:
    """Return (build file, None) for a build commit, else (None, reason).

    A build commit adds exactly one file. Commits touching several files
    are never treated as builds, even when one of them is a build file.
    """
    files = commit.get("files") or []
    commit_file = files[0] if len(files) == 1 else None
    if not commit_file or commit_file.get("status") != "added":
        return None, "not a build commit"

    location = unquote(commit_file.get("blob_url") or "")
    if not path_pattern.search(location):
        return None, "not a build file"

    return {"sha": commit_file.get("sha"), "location": location}, None


def resolve_snapshot(tree: list[dict], snapshot_filename: str) -> str | None:
    """SHA of the snapshot file at the tree root; first match wins."""
    for entry in tree:
        if entry.get("path") == snapshot_filename:
            return entry.get("sha")
    return None


def diff_contents(client: GitHubClient, snapshot_sha: str, build_sha: str, config: dict) -> Outcome:
    current_content = decode_blob(client.get_blob(snapshot_sha))
    new_content = decode_blob(client.get_blob(build_sha))
    log_debug(f"current content: {len(current_content)} chars", config)
    log_debug(f"new content: {len(new_content)} chars", config)

    try:
        diff = diff_strings(current_content, new_content, get_diff_mode(config))
    except Exception as e:
        return Outcome.failed(f"unable to diff strings: {e}")

    if not diff:
        return Outcome.no_change()
    return Outcome.ready(diff)


def run_pipeline(event_name: str, payload: dict, client: GitHubClient, config: dict) -> Outcome:
    if event_name != "push":
        return Outcome.not_applicable(f"ignoring {event_name or 'unknown'} event")

    commit = client.get_commit(payload["after"])
    if not commit:
        return Outcome.failed("commit not found")

    build_file, reason = classify_commit(commit, get_path_pattern(config))
    if not build_file:
        return Outcome.not_applicable(reason)
    print(f"  Build file: {build_file['location']}")

    tree = client.get_tree(payload["before"])
    snapshot_sha = resolve_snapshot(tree, get_snapshot_filename(config))
    if not snapshot_sha:
        return Outcome.not_applicable("no current file")

    return diff_contents(client, snapshot_sha, build_file["sha"], config)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def report(outcome: Outcome, client: GitHubClient, commit_sha: str, config: dict) -> int:
    """Perform the one action the outcome calls for and return the exit status.

    The step summary is written only once the action has happened.
    """
    if outcome.kind == NOT_APPLICABLE:
        print(outcome.detail)
        write_step_summary(f"Skipped: {outcome.detail}", config)
        return 0

    if outcome.kind == NO_CHANGE:
        print("no strings changed")
        write_step_summary("No strings changed", config)
        return 0

    if outcome.kind == READY:
        if config.get("run", {}).get("dry_run"):
            print(f"[DRY RUN] Would comment on {commit_sha}:")
            print(outcome.detail)
            write_step_summary(f"Would comment string diff on `{commit_sha[:7]}` (dry run)", config)
            return 0
        client.create_commit_comment(commit_sha, outcome.detail)
        print("created commit comment")
        write_step_summary(f"Commented string diff on `{commit_sha[:7]}`", config)
        return 0

    log_error(outcome.detail)
    write_step_summary(f"Failed: {outcome.detail}", config)
    return 1


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    print("=== Build Diff ===")
    config = {}
    try:
        config = load_config()
        token, repo = load_credentials()
        client = GitHubClient(repo, token, timeout=config.get("github", {}).get("api_timeout", 30))

        event_name, payload = load_push_event()
        outcome = run_pipeline(event_name, payload, client, config)
        return report(outcome, client, payload.get("after", ""), config)
    except Exception as e:
        if config.get("run", {}).get("debug"):
            log_error(traceback.format_exc())
        else:
            log_error(str(e) or type(e).__name__)
        write_step_summary(f"Failed: {str(e) or type(e).__name__}", config)
        return 1


if __name__ == "__main__":
    sys.exit(main())
