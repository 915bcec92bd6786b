import pytest

from budget_core.store import store


@pytest.fixture(autouse=True)
def clean_store() -> None:
    store.clear()
