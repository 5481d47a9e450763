"""Configuration loading for the flakebot workflow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


GROQ_API_BASE_URL = "https://api.groq.com/openai/v1"
GROQ_BASE_MODEL = "llama3-70b-8192"
DEFAULT_COMMIT_AUTHOR = "FlakeBot <flakebot@flakebot.com>"


def _get_env_timedelta(name: str, default_seconds: int) -> timedelta:
    value = os.getenv(name)
    if not value:
        return timedelta(seconds=default_seconds)
    try:
        seconds = int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {name}: {value}") from exc
    if seconds < 0:
        raise ValueError(f"{name} must not be negative")
    return timedelta(seconds=seconds)


def _get_env_limit(name: str) -> Optional[int]:
    """Read an optional positive bound; unset or empty means unbounded."""
    value = os.getenv(name)
    if not value:
        return None
    try:
        limit = int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {name}: {value}") from exc
    if limit < 1:
        raise ValueError(f"{name} must be at least 1 when set")
    return limit


@dataclass(frozen=True)
class CrafterConfig:
    """Holds runtime configuration for a single workflow run."""

    groq_api_key: str
    github_token: str
    cargo_cookie: Optional[str] = None
    model: str = GROQ_BASE_MODEL
    base_url: str = GROQ_API_BASE_URL
    work_dir: Path = field(default_factory=lambda: Path("./work_dir"))
    reference_flake: Path = field(default_factory=lambda: Path("./reference_flake.nix"))
    tooling_dir: Path = field(default_factory=lambda: Path("."))
    retry_interval: timedelta = field(default_factory=lambda: timedelta(seconds=10))
    max_attempts: Optional[int] = None
    max_repair_iterations: Optional[int] = None
    commit_author: str = DEFAULT_COMMIT_AUTHOR

    @classmethod
    def from_env(
        cls,
        *,
        groq_api_key: Optional[str] = None,
        github_token: Optional[str] = None,
    ) -> "CrafterConfig":
        """Create configuration from environment variables with validation.

        Secrets passed explicitly (from CLI flags) take precedence over the
        environment.
        """
        # Load .env if available (non-destructive)
        load_dotenv(override=False)

        api_key = groq_api_key or os.getenv("GROQ_API_KEY")
        if not api_key:
            raise EnvironmentError("GROQ_API_KEY must be set")

        github_token = github_token or os.getenv("GITHUB_TOKEN")
        if not github_token:
            raise EnvironmentError("GITHUB_TOKEN must be set")

        base_url = os.getenv("FLAKEBOT_BASE_URL", GROQ_API_BASE_URL)
        if not base_url.startswith(("http://", "https://")):
            raise ValueError("FLAKEBOT_BASE_URL must be a valid HTTP/HTTPS URL")

        model = os.getenv("FLAKEBOT_MODEL", GROQ_BASE_MODEL)
        if not model.strip():
            raise ValueError("FLAKEBOT_MODEL must be non-empty")

        commit_author = os.getenv("FLAKEBOT_COMMIT_AUTHOR", DEFAULT_COMMIT_AUTHOR)
        if "<" not in commit_author or not commit_author.endswith(">"):
            raise ValueError("FLAKEBOT_COMMIT_AUTHOR must look like 'Name <email>'")

        return cls(
            groq_api_key=api_key,
            github_token=github_token,
            cargo_cookie=os.getenv("CARGO_COOKIE") or None,
            model=model,
            base_url=base_url.rstrip("/"),
            work_dir=Path(os.getenv("FLAKEBOT_WORK_DIR", "./work_dir")),
            reference_flake=Path(os.getenv("FLAKEBOT_REFERENCE_FLAKE", "./reference_flake.nix")),
            tooling_dir=Path(os.getenv("FLAKEBOT_TOOLING_DIR", ".")),
            retry_interval=_get_env_timedelta("FLAKEBOT_RETRY_SECONDS", 10),
            max_attempts=_get_env_limit("FLAKEBOT_MAX_ATTEMPTS"),
            max_repair_iterations=_get_env_limit("FLAKEBOT_MAX_REPAIR_ITERATIONS"),
            commit_author=commit_author,
        )
