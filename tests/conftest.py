import pytest

from stacker.models import Holding, MetalType


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test's data, settings and credentials out of the real home."""
    monkeypatch.setenv("STACKER_DATA_DIR", str(tmp_path / "data"))
    for name in ("GEMINI_API_KEY", "API_KEY", "GEMINI_MODEL", "STACKER_CACHE_TTL", "STACKER_USER", "STACKER_SERVER_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def eagles():
    return Holding(
        name="American Silver Eagle",
        category="Coin",
        quantity=10,
        oz_per_unit=1,
        purity=0.999,
        purchase_price=320,
    )


@pytest.fixture
def dimes():
    return Holding(
        name="Roosevelt Dime",
        category="Junk",
        quantity=40,
        oz_per_unit=0.0357,
        purity=0.90,
    )


@pytest.fixture
def gold_bar():
    return Holding(
        name="PAMP Suisse 1oz Gold Bar",
        metal_type=MetalType.GOLD,
        category="Bar",
        quantity=1,
        oz_per_unit=1,
        purity=0.9999,
        purchase_price=2100,
    )
