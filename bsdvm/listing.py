"""Remote directory listing scraping and release version resolution."""

from __future__ import annotations

from typing import List, Optional, Set

try:
    import requests
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from bsdvm.constants import ISO_IMAGES_INDEX, VERSION_TOKEN_RE, VM_IMAGES_INDEX
from bsdvm.exceptions import DownloadFailed, ResolutionFailed
from bsdvm.models import ReleaseSelector, VersionIdentifier
from bsdvm.utils import log, new_session


def parse_version_listing(text: str) -> Set[str]:
    """Extract every version token from a directory listing page.

    Input is the raw listing text (usually an HTML index). Output is the set of
    ``<major>.<minor>-<CLASS><seq>`` strings found anywhere in it, for example
    ``{"14.3-RELEASE", "15.0-BETA1"}``. Tokens inside file names such as
    ``FreeBSD-15.0-RELEASE-amd64-bootonly.iso`` are included.
    """
    return {
        f"{numbers}-{release_class}{sequence}"
        for numbers, release_class, sequence in VERSION_TOKEN_RE.findall(text)
    }


def select_latest(tokens: Set[str], release_class: str) -> Optional[VersionIdentifier]:
    """Return the numerically greatest version of exactly ``release_class``."""
    candidates: List[VersionIdentifier] = []
    for token in tokens:
        version = VersionIdentifier.parse(token)
        if version.release_class == release_class:
            candidates.append(version)
    if not candidates:
        return None
    candidates.sort(key=lambda v: v.sort_key, reverse=True)
    return candidates[0]


class DirectoryLister:
    """Fetch listing pages from the artifact server."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = 60) -> None:
        self.session = session or new_session()
        self.timeout = timeout

    def fetch(self, url: str) -> str:
        log("DEBUG", f"Fetching listing {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise DownloadFailed(f"Failed to fetch listing {url}: {exc}")
        if response.status_code >= 400:
            raise DownloadFailed(f"HTTP error fetching listing {url}: {response.status_code} {response.reason}")
        return response.text


class VersionResolver:
    def __init__(self, lister: DirectoryLister, base_uri: str) -> None:
        self.lister = lister
        self.base_uri = base_uri if base_uri.endswith("/") else base_uri + "/"

    def _latest_from(self, url: str, release_class: str) -> VersionIdentifier:
        tokens = parse_version_listing(self.lister.fetch(url))
        latest = select_latest(tokens, release_class)
        if latest is None:
            raise ResolutionFailed(f"No {release_class} versions found in listing {url}")
        return latest

    def resolve(self, selector: ReleaseSelector) -> VersionIdentifier:
        vm_index = self.base_uri + VM_IMAGES_INDEX
        top_level = self._latest_from(vm_index, selector.release_class)
        if not selector.is_iso:
            log("INFO", f"Latest {selector.release_class} VM image: {top_level}")
            return top_level

        # ISO artifacts live one level deeper, under the bare version directory.
        iso_index = f"{self.base_uri}{ISO_IMAGES_INDEX}{top_level.directory}/"
        version = self._latest_from(iso_index, selector.release_class)
        log("INFO", f"Latest {selector.release_class} ISO: {version}")
        return version
