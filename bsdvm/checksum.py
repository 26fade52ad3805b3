"""SHA-512 manifest verification for downloaded artifacts."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import List, Optional

from bsdvm.constants import SHA512_HEX_RE
from bsdvm.exceptions import HashMismatch, ManifestMissing
from bsdvm.utils import log


class DigestComputer:
    """Compute file digests with the algorithm used by the upstream manifests."""

    algorithm = "sha512"

    def __init__(self, chunk_size: int = 1024 * 1024) -> None:
        self.chunk_size = chunk_size

    def hexdigest(self, path: Path) -> str:
        digest = hashlib.new(self.algorithm)
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b""):
                digest.update(chunk)
        return digest.hexdigest()


def expected_digests(basename: str, manifests: List[Path]) -> List[str]:
    """Collect digests from every manifest line that mentions ``basename``.

    Manifests list several related files (``x.iso`` and ``x.iso.xz`` share a
    prefix), so lines are matched by substring and the caller accepts any of
    the returned digests.
    """
    digests: List[str] = []
    for manifest in manifests:
        for line in manifest.read_text(errors="replace").splitlines():
            if basename not in line:
                continue
            match = SHA512_HEX_RE.search(line)
            if match:
                digests.append(match.group(0).lower())
    return digests


class ChecksumVerifier:
    def __init__(self, computer: Optional[DigestComputer] = None) -> None:
        self.computer = computer or DigestComputer()

    def verify(self, file_path: Path, manifest_glob: str, name: Optional[str] = None) -> None:
        """Verify ``file_path`` against the manifests matching ``manifest_glob``.

        The glob is resolved relative to the artifact's directory. ``name`` is
        the basename looked up in the manifests and defaults to the file's own
        name; it differs when a file is checked before being renamed into
        place. On mismatch the untrusted file is deleted so a later run cannot
        mistake it for a valid download.
        """
        file_path = Path(file_path)
        name = name or file_path.name
        if not file_path.exists() or file_path.stat().st_size == 0:
            raise HashMismatch(f"No file {file_path} for hash verification")

        manifests = sorted(file_path.parent.glob(manifest_glob))
        digests = expected_digests(name, manifests)
        if not digests:
            raise ManifestMissing(
                f"No checksum entry for {name} in manifests matching {file_path.parent / manifest_glob}"
            )

        log("INFO", f"Validating SHA512 checksum of {name}...")
        actual = self.computer.hexdigest(file_path)
        if actual.lower() not in digests:
            file_path.unlink(missing_ok=True)
            raise HashMismatch(
                f"Checksum mismatch for {file_path} (file removed)\n"
                f"  Expected: {' or '.join(digests)}\n"
                f"  Actual:   {actual}"
            )
        log("SUCCESS", f"Checksum OK: {name}")
