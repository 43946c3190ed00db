"""
github_api.py — Read commits, trees and blobs and post commit comments via `gh api`.

Every call runs one `gh api` subprocess to completion. A non-zero exit is
raised as a GitHubAPIError subclass chosen from the HTTP status gh reports;
nothing is retried here.
"""

import base64
import json
import os
import re
import subprocess

DEFAULT_TIMEOUT = 30

_HTTP_STATUS_RE = re.compile(r"\(HTTP (\d{3})\)")


class GitHubAPIError(Exception):
    """A `gh api` call failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NotFoundError(GitHubAPIError):
    pass


class ForbiddenError(GitHubAPIError):
    pass


class RateLimitedError(GitHubAPIError):
    pass


def _gh_api(args: list[str], timeout: int = DEFAULT_TIMEOUT,
            token: str | None = None, input_data: str | None = None) -> tuple[int, str, str]:
    """Run gh api command."""
    env = None
    if token:
        env = {**os.environ, "GH_TOKEN": token}
    try:
        result = subprocess.run(
            ["gh", "api"] + args,
            capture_output=True, text=True, timeout=timeout,
            env=env, input=input_data,
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", "timeout"
    except (OSError, subprocess.SubprocessError) as e:
        return -1, "", str(e)


def raise_for_gh_error(endpoint: str, rc: int, stderr: str):
    """Translate a failed gh invocation into the matching exception."""
    if rc == 0:
        return
    detail = stderr.strip() or f"gh exited with status {rc}"
    message = f"{endpoint}: {detail}"

    match = _HTTP_STATUS_RE.search(stderr)
    status = int(match.group(1)) if match else None

    if status == 429 or "rate limit" in stderr.lower():
        raise RateLimitedError(message, status)
    if status == 404:
        raise NotFoundError(message, status)
    if status in (401, 403):
        raise ForbiddenError(message, status)
    raise GitHubAPIError(message, status)


def decode_blob(blob: dict) -> str:
    """Decode a git blob payload to text, byte for byte."""
    encoding = blob.get("encoding", "base64")
    content = blob.get("content") or ""
    if encoding == "utf-8":
        return content
    if encoding != "base64":
        raise GitHubAPIError(f"unsupported blob encoding: {encoding}")
    # GitHub wraps base64 at 60 columns; b64decode skips the newlines
    raw = base64.b64decode(content)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise GitHubAPIError(f"blob {blob.get('sha', '?')} is not valid UTF-8: {e}") from e


class GitHubClient:
    """Minimal REST client for one repository, authenticated with a token."""

    def __init__(self, repo: str, token: str, timeout: int = DEFAULT_TIMEOUT):
        self.repo = repo
        self.token = token
        self.timeout = timeout

    def _request(self, endpoint: str, method: str = "GET", payload: dict | None = None):
        args = [endpoint, "--method", method]
        input_data = None
        if payload is not None:
            args += ["--input", "-"]
            input_data = json.dumps(payload, ensure_ascii=False)

        rc, stdout, stderr = _gh_api(
            args, timeout=self.timeout, token=self.token, input_data=input_data,
        )
        raise_for_gh_error(endpoint, rc, stderr)

        if not stdout.strip():
            return {}
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise GitHubAPIError(f"{endpoint}: invalid JSON response ({e})") from e

    def get_commit(self, ref: str) -> dict:
        return self._request(f"repos/{self.repo}/commits/{ref}")

    def get_tree(self, ref: str) -> list[dict]:
        """Top-level entries of the tree at ref (not recursive)."""
        data = self._request(f"repos/{self.repo}/git/trees/{ref}")
        return data.get("tree") or []

    def get_blob(self, sha: str) -> dict:
        return self._request(f"repos/{self.repo}/git/blobs/{sha}")

    def create_commit_comment(self, commit_sha: str, body: str) -> dict:
        return self._request(
            f"repos/{self.repo}/commits/{commit_sha}/comments",
            method="POST",
            payload={"body": body},
        )
