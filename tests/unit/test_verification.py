import json
from pathlib import Path

import httpx
import pytest

from smarthopper.errors import SignatureError
from smarthopper.providers.verification import (
    HashVerifier,
    SignatureVerifier,
    VerificationStatus,
    calculate_file_hash,
)

TEST_SHA256 = "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
BASE_URL = "https://hashes.test/hashes"


def _plugin(tmp_path: Path, content: bytes = b"test") -> Path:
    path = tmp_path / "smarthopper_providers_mock.py"
    path.write_bytes(content)
    return path


def _verifier(manifests: dict[str, object], requested: list[str] | None = None) -> HashVerifier:
    def handler(request: httpx.Request) -> httpx.Response:
        if requested is not None:
            requested.append(request.url.path.rsplit("/", 1)[-1])
        name = request.url.path.rsplit("/", 1)[-1]
        manifest = manifests.get(name)
        if manifest is None:
            return httpx.Response(404)
        if isinstance(manifest, httpx.Response):
            return manifest
        return httpx.Response(200, text=json.dumps(manifest))

    return HashVerifier(BASE_URL, transport=httpx.MockTransport(handler))


def test_calculate_file_hash_known_values(tmp_path: Path) -> None:
    assert calculate_file_hash(_plugin(tmp_path)) == TEST_SHA256
    empty = tmp_path / "empty.py"
    empty.write_bytes(b"")
    assert calculate_file_hash(empty) == EMPTY_SHA256
    with pytest.raises(FileNotFoundError):
        calculate_file_hash(tmp_path / "missing.py")


@pytest.mark.asyncio
async def test_verify_match_prefers_platform_entry(tmp_path: Path) -> None:
    verifier = _verifier(
        {
            "1.2.0.json": {
                "providers": {
                    "smarthopper_providers_mock.py-net7.0-linux": TEST_SHA256.upper(),
                    "smarthopper_providers_mock.py": "0" * 64,
                }
            }
        }
    )

    result = await verifier.verify_provider(_plugin(tmp_path), "1.2.0", "net7.0-linux")

    assert result.status is VerificationStatus.MATCH
    assert result.success
    assert result.local_hash == TEST_SHA256


@pytest.mark.asyncio
async def test_verify_mismatch_reports_both_hashes(tmp_path: Path) -> None:
    verifier = _verifier(
        {"1.2.0.json": {"providers": {"smarthopper_providers_mock.py": "ab" * 32}}}
    )

    result = await verifier.verify_provider(_plugin(tmp_path), "1.2.0", "net7.0-linux")

    assert result.status is VerificationStatus.MISMATCH
    assert result.public_hash == "ab" * 32
    assert TEST_SHA256 in result.error_message


@pytest.mark.asyncio
async def test_verify_falls_back_to_latest_manifest(tmp_path: Path) -> None:
    requested: list[str] = []
    verifier = _verifier(
        {"latest.json": {"providers": {"smarthopper_providers_mock.py": TEST_SHA256}}}, requested
    )

    result = await verifier.verify_provider(_plugin(tmp_path), "9.9.9", "net7.0-linux")

    assert result.status is VerificationStatus.MATCH
    assert requested == ["9.9.9.json", "latest.json"]


@pytest.mark.asyncio
async def test_malformed_manifest_is_skipped(tmp_path: Path) -> None:
    verifier = _verifier(
        {
            "1.0.0.json": httpx.Response(200, text="<html>not json</html>"),
            "latest.json": {"providers": {"smarthopper_providers_mock.py": TEST_SHA256}},
        }
    )

    result = await verifier.verify_provider(_plugin(tmp_path), "1.0.0", "net7.0-linux")

    assert result.status is VerificationStatus.MATCH


@pytest.mark.asyncio
async def test_verify_not_found_and_unavailable(tmp_path: Path) -> None:
    path = _plugin(tmp_path)

    not_found = await _verifier({"1.0.0.json": {"providers": {}}}).verify_provider(
        path, "1.0.0", "net7.0-linux"
    )
    unavailable = await _verifier({}).verify_provider(path, "1.0.0", "net7.0-linux")
    missing = await _verifier({}).verify_provider(tmp_path / "gone.py", "1.0.0", "x")

    assert not_found.status is VerificationStatus.NOT_FOUND
    assert unavailable.status is VerificationStatus.UNAVAILABLE
    assert "Failed to retrieve public hash manifest" in unavailable.error_message
    assert missing.status is VerificationStatus.UNAVAILABLE
    assert missing.local_hash == ""


@pytest.mark.asyncio
async def test_network_failure_is_unavailable(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    verifier = HashVerifier(BASE_URL, transport=httpx.MockTransport(handler))

    result = await verifier.verify_provider(_plugin(tmp_path), "1.0.0", "net7.0-linux")

    assert result.status is VerificationStatus.UNAVAILABLE


@pytest.mark.asyncio
async def test_verify_all_providers_uses_pattern(tmp_path: Path) -> None:
    _plugin(tmp_path)
    (tmp_path / "unrelated.py").write_text("x = 1\n")
    verifier = _verifier(
        {"1.0.0.json": {"providers": {"smarthopper_providers_mock.py": TEST_SHA256}}}
    )

    results = await verifier.verify_all_providers(tmp_path, "1.0.0", "net7.0-linux")

    assert list(results) == ["smarthopper_providers_mock.py"]
    assert results["smarthopper_providers_mock.py"].success
    assert await verifier.verify_all_providers(tmp_path / "nope", "1.0.0", "x") == {}


def test_signature_verifier_disabled_without_key(tmp_path: Path) -> None:
    verifier = SignatureVerifier(key="")
    assert not verifier.enabled
    verifier.verify(_plugin(tmp_path))


def test_signature_verifier_checks_detached_signature(tmp_path: Path) -> None:
    path = _plugin(tmp_path)
    verifier = SignatureVerifier(key="release-key")

    with pytest.raises(SignatureError, match="missing"):
        verifier.verify(path)

    signature = path.with_name(path.name + ".sig")
    signature.write_text(verifier.sign(path) + "\n")
    verifier.verify(path)

    signature.write_text("00" * 32)
    with pytest.raises(SignatureError, match="failed"):
        verifier.verify(path)
