"""Integrity checks for provider plugin files: published SHA-256 hashes and HMAC signatures."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import httpx
from pydantic import BaseModel, ValidationError

from smarthopper.config import get_settings
from smarthopper.errors import SignatureError

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".sig"


class VerificationStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class VerificationResult:
    status: VerificationStatus
    local_hash: str = ""
    public_hash: str = ""
    error_message: str = ""

    @property
    def success(self) -> bool:
        return self.status is VerificationStatus.MATCH


class HashManifest(BaseModel):
    providers: dict[str, str]


def calculate_file_hash(path: str | Path) -> str:
    """Lowercase hex SHA-256 of the file; missing files raise ``FileNotFoundError``."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class HashVerifier:
    """Compares local plugin files against the hash manifest published for a release."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.hash_base_url).rstrip("/")
        self.timeout = timeout or settings.hash_timeout_seconds
        self._transport = transport

    def manifest_urls(self, version: str) -> list[str]:
        return [f"{self.base_url}/{version}.json", f"{self.base_url}/latest.json"]

    async def fetch_public_hashes(self, version: str) -> dict[str, str] | None:
        """Version manifest first, then ``latest``; ``None`` when neither is usable."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for url in self.manifest_urls(version):
                try:
                    response = await client.get(url)
                except httpx.HTTPError as exc:
                    logger.info("Fetching hash manifest from %s failed: %s", url, exc)
                    continue
                if response.status_code == 404:
                    logger.info("Hash manifest not found at %s", url)
                    continue
                if response.status_code >= 400:
                    logger.info("Hash manifest at %s returned %d", url, response.status_code)
                    continue
                try:
                    return HashManifest.model_validate_json(response.text).providers
                except ValidationError:
                    logger.warning("Hash manifest at %s is malformed", url)
                    continue
        return None

    async def verify_provider(
        self, path: str | Path, version: str, platform: str
    ) -> VerificationResult:
        path = Path(path)
        try:
            local_hash = calculate_file_hash(path)
        except OSError as exc:
            return VerificationResult(
                VerificationStatus.UNAVAILABLE,
                error_message=f"Error during hash verification: {exc}",
            )

        public_hashes = await self.fetch_public_hashes(version)
        if public_hashes is None:
            return VerificationResult(
                VerificationStatus.UNAVAILABLE,
                local_hash=local_hash,
                error_message=(
                    "Failed to retrieve public hash manifest. This may be due to network "
                    "connectivity issues or source unavailability."
                ),
            )

        public_hash = public_hashes.get(f"{path.name}-{platform}") or public_hashes.get(path.name)
        if not public_hash:
            return VerificationResult(
                VerificationStatus.NOT_FOUND,
                local_hash=local_hash,
                error_message=f"Hash not found in public manifest for {path.name} ({platform})",
            )

        if public_hash.lower() == local_hash:
            return VerificationResult(
                VerificationStatus.MATCH, local_hash=local_hash, public_hash=public_hash
            )
        return VerificationResult(
            VerificationStatus.MISMATCH,
            local_hash=local_hash,
            public_hash=public_hash,
            error_message=(
                f"SHA-256 hash mismatch detected for {path.name}. "
                f"Expected: {public_hash}, Actual: {local_hash}"
            ),
        )

    async def verify_all_providers(
        self, directory: str | Path, version: str, platform: str, pattern: str | None = None
    ) -> dict[str, VerificationResult]:
        root = Path(directory) if directory else None
        if root is None or not root.is_dir():
            logger.info("Provider directory is invalid: %r", directory)
            return {}
        pattern = pattern or get_settings().provider_pattern
        results: dict[str, VerificationResult] = {}
        for path in sorted(root.glob(pattern)):
            results[path.name] = await self.verify_provider(path, version, platform)
        return results


class SignatureVerifier:
    """Checks the detached ``<file>.sig`` HMAC-SHA256 written at release time.

    Without a signing key the check is disabled and every file passes.
    """

    def __init__(self, key: str | None = None) -> None:
        self.key = get_settings().signing_key if key is None else key

    @property
    def enabled(self) -> bool:
        return bool(self.key)

    def sign(self, path: str | Path) -> str:
        data = Path(path).read_bytes()
        return hmac.new(self.key.encode("utf-8"), data, hashlib.sha256).hexdigest()

    def verify(self, path: str | Path) -> None:
        if not self.enabled:
            return
        path = Path(path)
        signature_path = path.with_name(path.name + SIGNATURE_SUFFIX)
        if not signature_path.is_file():
            raise SignatureError(f"Signature file missing for provider '{path.name}'")
        expected = signature_path.read_text(encoding="utf-8").strip().lower()
        if not hmac.compare_digest(self.sign(path), expected):
            raise SignatureError(f"Signature verification failed for provider '{path.name}'")
