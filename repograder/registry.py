"""
npm registry lookup of the latest published dependency versions.

Gives the quality review something concrete to compare a project's
package.json against. Best-effort: lookups that fail are skipped.
"""

import asyncio
import logging
from urllib.parse import quote

import requests

from .config import MAX_REGISTRY_LOOKUPS, NPM_REGISTRY_URL, REGISTRY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class NpmRegistryClient:
    """Fetches `<registry>/<package>/latest` for declared dependencies."""

    def __init__(
        self,
        registry_url: str = NPM_REGISTRY_URL,
        timeout_seconds: int = REGISTRY_TIMEOUT_SECONDS,
        max_lookups: int = MAX_REGISTRY_LOOKUPS,
    ) -> None:
        self.registry_url = registry_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_lookups = max_lookups

    def latest_version(self, package: str) -> str | None:
        url = f"{self.registry_url}/{quote(package, safe='@')}/latest"
        try:
            response = requests.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            logger.debug("Registry lookup for %s failed: %s", package, e)
            return None

        if response.status_code != 200:
            logger.debug("Registry lookup for %s returned %s", package, response.status_code)
            return None

        try:
            return response.json().get("version")
        except ValueError:
            return None

    async def latest_versions(self, packages: list[str]) -> dict[str, str]:
        """
        Look up the latest version of up to `max_lookups` packages concurrently.

        Returns:
            Mapping of package name to latest version for the lookups that succeeded.
        """
        selected = packages[: self.max_lookups]
        if not selected:
            return {}

        versions = await asyncio.gather(
            *(asyncio.to_thread(self.latest_version, package) for package in selected)
        )
        found = {package: version for package, version in zip(selected, versions) if version}
        logger.info("Registry lookup resolved %d of %d dependencies", len(found), len(selected))
        return found
