import pytest

from store.preference_store import PreferenceStore


@pytest.fixture
def prefs(tmp_path) -> PreferenceStore:
    store = PreferenceStore(str(tmp_path / "prefs.yaml"))
    store.update({
        "device_id": "dev-1",
        "auth_token": "tok-1",
        "onboarding_completed": True,
        "preferred_lang": "en",
    })
    return store
