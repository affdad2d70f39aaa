import pytest

from libcat import config
from libcat.exceptions import NotReadyError, ProfileError, ScanInProgressError
from libcat.profiles import ProfileService
from libcat.workspace import Workspace


@pytest.fixture
def profiles(tmp_path):
    return ProfileService(tmp_path)


def test_locked_workspace_is_not_ready(profiles):
    ws = Workspace(profiles)
    assert not ws.is_unlocked
    with pytest.raises(NotReadyError, match="No profile selected"):
        ws.require()


def test_unlock_opens_profile_database(profiles):
    p = profiles.create("Movies")
    ws = Workspace(profiles)
    ws.unlock(p.id)

    store, thumbnails = ws.require()
    assert (profiles.profile_path(p.id) / config.DB_FILENAME).exists()
    assert thumbnails.thumbnail_dir == profiles.profile_path(p.id) / config.THUMBNAILS_DIRNAME
    assert store.list_movies() == []

    ws.lock()
    assert not ws.is_unlocked
    ws.lock()


def test_unlock_with_wrong_password_keeps_current_profile(profiles):
    open_ = profiles.create("Open")
    locked = profiles.create("Locked", password="pw")
    ws = Workspace(profiles)
    ws.unlock(open_.id)

    with pytest.raises(ProfileError, match="Invalid password"):
        ws.unlock(locked.id, "nope")
    assert ws.profile_id == open_.id

    ws.unlock(locked.id, "pw")
    assert ws.profile_id == locked.id
    ws.lock()


def test_profiles_have_separate_libraries(profiles):
    a = profiles.create("A")
    b = profiles.create("B")
    ws = Workspace(profiles)

    ws.unlock(a.id)
    ws.require()[0].insert("/m/only-in-a.mp4")
    ws.unlock(b.id)
    assert ws.require()[0].list_movies() == []
    ws.lock()


def test_matcher_requires_api_key(profiles):
    p = profiles.create("Movies")
    created = []

    def factory(api_key, data_dir):
        created.append((api_key, data_dir))
        return object()

    ws = Workspace(profiles, matcher_factory=factory)
    ws.unlock(p.id)
    assert ws.matcher() is None

    ws.require()[0].set_setting(config.SETTING_TMDB_API_KEY, "k")
    assert ws.matcher() is not None
    assert created == [("k", profiles.profile_path(p.id))]
    ws.lock()


def test_single_scan_slot(profiles):
    ws = Workspace(profiles)
    with ws.active_scan():
        with pytest.raises(ScanInProgressError):
            with ws.active_scan():
                pass
    with ws.active_scan():
        pass
