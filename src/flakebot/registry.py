"""crates.io lookup: crate name to source repository URL."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

CRATES_IO_API_URL = "https://crates.io/api/v1/crates"
USER_AGENT = "flakebot (https://github.com/flakebot/flakebot)"


class CratesIoResolver:
    """Resolves a crate name to its repository URL.

    A missing crate is a normal negative answer, so every failure is logged
    and reported as ``None``; nothing is retried.
    """

    def __init__(
        self,
        cargo_cookie: Optional[str] = None,
        *,
        session: Optional[Any] = None,
        base_url: str = CRATES_IO_API_URL,
        timeout: float = 30.0,
    ) -> None:
        self._session = session or requests.Session()
        self._cargo_cookie = cargo_cookie
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def resolve(self, name: str) -> Optional[str]:
        logger.info("Searching crates.io for %s", name)
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self._cargo_cookie:
            headers["Cookie"] = f"cargo_session={self._cargo_cookie}"

        try:
            resp = self._session.get(f"{self._base_url}/{name}", headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.error("Error fetching crate info for %s: %s", name, exc)
            return None

        logger.info("Response status: %s", resp.status_code)
        if not resp.ok:
            logger.error("Failed to fetch crate info from crates.io with status: %s", resp.status_code)
            return None

        try:
            body = resp.json()
        except ValueError as exc:
            logger.error("Failed to parse JSON response: %s", exc)
            return None

        crate = body.get("crate") if isinstance(body, dict) else None
        repo_url = crate.get("repository") if isinstance(crate, dict) else None
        if not isinstance(repo_url, str) or not repo_url.strip():
            logger.error("crates.io entry for %s has no repository URL", name)
            return None
        logger.info("Repository URL: %s", repo_url)
        return repo_url.strip()
