import pytest

_ENV_VARS = (
    "HECK_PASSAGE_CONFIG_PATH",
    "PORT",
    "API_MASTER_KEY",
    "UPSTREAM_API_BASE",
    "AI_LANGUAGE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep settings from the developer's shell out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
