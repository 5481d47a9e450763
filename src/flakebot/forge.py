"""GitHub and local git operations for the candidate repository."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from .completion import CompletionClient, CompletionError
from .config import DEFAULT_COMMIT_AUTHOR
from .models import WorkflowStage

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

_GITHUB_REPO = re.compile(r"github\.com[:/]+(?P<owner>[^/\s]+)/(?P<repo>[^/\s#?]+)")
_AUTHOR = re.compile(r"^(?P<name>[^<]+?)\s*<(?P<email>[^>]+)>$")


class ForgeError(RuntimeError):
    """Raised when a git or GitHub operation fails."""


def parse_github_repo(url: str) -> Tuple[str, str]:
    """Return ``(owner, repo)`` for a GitHub repository URL."""
    match = _GITHUB_REPO.search(url)
    if not match:
        raise ForgeError(f"Not a GitHub repository URL: {url}")
    repo = match.group("repo")
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return match.group("owner"), repo


def repo_name_from_url(url: str) -> str:
    name = url.strip().rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name:
        raise ForgeError(f"Cannot derive a repository name from {url!r}")
    return name


def run_git(*args: str, cwd: Optional[Path] = None) -> str:
    """Run a git command and return its stdout.

    Raises:
        ForgeError: If git is missing or exits non-zero.
    """
    cmd = ["git", *args]
    logger.debug("Running %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError:
        raise ForgeError("git not found on PATH") from None
    if result.returncode != 0:
        raise ForgeError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout


class GitHubForge:
    """Fork, clone, branch, commit, push and propose changes on GitHub."""

    def __init__(
        self,
        token: str,
        completion: CompletionClient,
        *,
        session: Optional[Any] = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
        commit_author: str = DEFAULT_COMMIT_AUTHOR,
    ) -> None:
        self._token = token
        self._completion = completion
        self._session = session or requests.Session()
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._commit_author = commit_author

    # -- REST -----------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = path if path.startswith("http") else f"{self._api_url}{path}"
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        try:
            resp = self._session.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise ForgeError(f"GitHub {method} {url} failed: {exc}") from exc
        if not resp.ok:
            logger.error("GitHub HTTP error %s for %s %s: %r", resp.status_code, method, url, resp.text[:500])
            raise ForgeError(f"GitHub {method} {url} failed with status {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise ForgeError(f"GitHub {method} {url} returned a non-JSON body") from exc

    def _user_repos(self) -> Iterator[Dict[str, Any]]:
        page = 1
        while True:
            batch = self._request("GET", "/user/repos", params={"per_page": 100, "page": page})
            if not batch:
                return
            yield from batch
            page += 1

    def find_fork(self, owner: str, repo: str) -> Optional[Dict[str, Any]]:
        """Return the user's existing fork of ``owner/repo``, if any."""
        target = f"{owner}/{repo}".lower()
        for candidate in self._user_repos():
            if not candidate.get("fork"):
                continue
            details = self._request("GET", candidate["url"])
            parent = details.get("parent") or {}
            if str(parent.get("full_name", "")).lower() == target:
                return details
        return None

    def fork_if_needed(self, source_url: str) -> str:
        """Return the clone URL of the user's fork, creating the fork if absent."""
        owner, repo = parse_github_repo(source_url)
        existing = self.find_fork(owner, repo)
        if existing:
            logger.info("Reusing existing fork %s", existing.get("full_name"))
            return existing["clone_url"]
        logger.info("Forking %s/%s", owner, repo)
        created = self._request("POST", f"/repos/{owner}/{repo}/forks", json={})
        clone_url = created.get("clone_url") if isinstance(created, dict) else None
        if not clone_url:
            raise ForgeError(f"Fork of {owner}/{repo} returned no clone_url")
        return clone_url

    # -- local git ------------------------------------------------------

    def clone_into(self, url: str, work_dir: Path, name: Optional[str] = None) -> Path:
        """Clone ``url`` into ``work_dir``, discarding any stale directory first."""
        destination = Path(work_dir) / (name or repo_name_from_url(url))
        if destination.exists():
            logger.info("Removing stale directory %s", destination)
            shutil.rmtree(destination)
        logger.info("Cloning %s into %s", url, destination)
        run_git("clone", url, str(destination))
        return destination

    def create_branch(self, repo_dir: Path, name: str) -> None:
        logger.info("Creating branch %s", name)
        run_git("checkout", "-b", name, cwd=repo_dir)

    def current_branch(self, repo_dir: Path) -> str:
        return run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=repo_dir).strip()

    def head_commit(self, repo_dir: Path) -> str:
        return run_git("rev-parse", "HEAD", cwd=repo_dir).strip()

    def default_branch(self, repo_dir: Path) -> str:
        ref = run_git("rev-parse", "--abbrev-ref", "origin/HEAD", cwd=repo_dir).strip()
        return ref.split("/", 1)[1] if ref.startswith("origin/") else ref

    def _author_config(self) -> List[str]:
        match = _AUTHOR.match(self._commit_author)
        if not match:
            return []
        return ["-c", f"user.name={match.group('name')}", "-c", f"user.email={match.group('email')}"]

    def commit_all(self, repo_dir: Path, stage: WorkflowStage) -> bool:
        """Stage everything and commit with a generated message.

        Returns False when there was nothing to commit.
        """
        logger.info("Staging changes...")
        run_git("add", "--all", cwd=repo_dir)
        staged = run_git("diff", "--cached", cwd=repo_dir)
        if not staged.strip():
            logger.error("Nothing to commit for stage %s", stage.value)
            return False

        # Whole tree is committed; the message only describes the stage paths.
        diff = staged
        if stage.diff_paths:
            scoped = run_git("diff", "--cached", "--", *stage.diff_paths, cwd=repo_dir)
            if scoped.strip():
                diff = scoped

        message = self._completion.commit_message(diff)
        logger.info("Committing changes: %s", message)
        run_git(
            *self._author_config(),
            "commit",
            "-m",
            message,
            "--author",
            self._commit_author,
            "--no-verify",
            cwd=repo_dir,
        )
        return True

    def push_current_branch(self, repo_dir: Path) -> None:
        branch = self.current_branch(repo_dir)
        logger.info("Pushing branch %s", branch)
        run_git("push", "--force", "--set-upstream", "origin", branch, cwd=repo_dir)

    def propose_change(self, repo_dir: Path, stage: WorkflowStage, base: str = "HEAD~1") -> bool:
        """Open a pull request for the commits made since ``base``.

        A failure anywhere in the proposal is logged and reported as False;
        the work is already pushed.
        """
        try:
            diff = run_git("diff", base, "HEAD", "--", *stage.diff_paths, cwd=repo_dir)
            if not diff.strip():
                logger.warning("No changes since %s for stage %s; skipping pull request", base, stage.value)
                return False
            title, body = self._completion.proposal_message_and_title(diff)
            head = self.current_branch(repo_dir)
        except (CompletionError, ForgeError) as exc:
            logger.error("Failed to prepare pull request for stage %s: %s", stage.value, exc)
            return False

        cmd = ["gh", "pr", "create", "--title", title, "--body", body, "--head", head]
        try:
            cmd.extend(["--base", self.default_branch(repo_dir)])
        except ForgeError as exc:
            logger.warning("Could not determine default branch, letting gh choose: %s", exc)

        logger.info("Opening pull request: %s", title)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=str(repo_dir),
                env={**os.environ, "GH_TOKEN": self._token},
            )
        except FileNotFoundError:
            logger.error("gh not found on PATH; pull request for %s not opened", head)
            return False
        if result.returncode != 0:
            logger.error("Failed to open pull request for %s: %s", head, result.stderr.strip())
            return False
        logger.info("Pull request opened: %s", result.stdout.strip())
        return True
