import pytest

from smarthopper.config import get_settings, validate_settings_for_env


def _base_prod_env(tmp_path) -> dict[str, str]:
    return {
        "APP_ENV": "prod",
        "SMARTHOPPER_SETTINGS_PATH": str(tmp_path / "prod-settings.json"),
        "SMARTHOPPER_HASH_BASE_URL": "https://hashes.example.org/hashes",
        "SMARTHOPPER_MAX_TOOL_ITERATIONS": "10",
        "SMARTHOPPER_REQUEST_TIMEOUT_SECONDS": "60",
    }


def test_validate_settings_prod_accepts_full_required_set(
    monkeypatch: pytest.MonkeyPatch, tmp_path
) -> None:
    for key, value in _base_prod_env(tmp_path).items():
        monkeypatch.setenv(key, value)

    get_settings.cache_clear()
    try:
        settings = get_settings()
        validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


def test_validate_settings_prod_requires_https_hash_source(
    monkeypatch: pytest.MonkeyPatch, tmp_path
) -> None:
    for key, value in _base_prod_env(tmp_path).items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("SMARTHOPPER_HASH_BASE_URL", "http://hashes.example.org/hashes")
    monkeypatch.setenv("SMARTHOPPER_SETTINGS_PATH", " ")

    get_settings.cache_clear()
    try:
        settings = get_settings()
        with pytest.raises(ValueError) as excinfo:
            validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()
    assert "SMARTHOPPER_HASH_BASE_URL" in str(excinfo.value)
    assert "SMARTHOPPER_SETTINGS_PATH" in str(excinfo.value)


def test_validate_settings_dev_skips_strict_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("SMARTHOPPER_HASH_BASE_URL", "http://localhost:8000/hashes")

    get_settings.cache_clear()
    try:
        settings = get_settings()
        validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("SMARTHOPPER_MAX_TOOL_ITERATIONS", "0"),
        ("SMARTHOPPER_REQUEST_TIMEOUT_SECONDS", "0"),
        ("SMARTHOPPER_STREAM_IDLE_TIMEOUT_SECONDS", "-1"),
    ],
)
def test_validate_settings_rejects_invalid_limits(
    monkeypatch: pytest.MonkeyPatch, key: str, value: str
) -> None:
    monkeypatch.setenv(key, value)

    get_settings.cache_clear()
    try:
        settings = get_settings()
        with pytest.raises(ValueError, match=key):
            validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


def test_tool_timeout_is_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMARTHOPPER_TOOL_TIMEOUT_SECONDS", "100000")
    get_settings.cache_clear()
    assert get_settings().clamped_tool_timeout() == 600

    monkeypatch.setenv("SMARTHOPPER_TOOL_TIMEOUT_SECONDS", "0")
    get_settings.cache_clear()
    assert get_settings().clamped_tool_timeout() == 1


def test_platform_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMARTHOPPER_PLATFORM", "net7.0-windows")
    get_settings.cache_clear()
    assert get_settings().resolved_platform() == "net7.0-windows"
