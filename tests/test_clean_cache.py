import pytest

from mealy.core.errors import StoreError
from scripts import clean_cache

from conftest import poi


def test_run_prints_deleted(store, clock, capsys):
    store.put("restaurants_0.0000_0.0000_800", [poi(1), poi(2)], 60)
    clock.advance(minutes=5)

    assert clean_cache.run(store, show_stats=False) == 0
    assert capsys.readouterr().out.strip() == "deleted=2"


def test_run_with_stats(store, capsys):
    store.put("restaurants_0.0000_0.0000_800", [poi(1)], 60)

    assert clean_cache.run(store, show_stats=True) == 0
    assert capsys.readouterr().out.splitlines() == ["deleted=0", "valid=1 expired=0 total=1"]


class BrokenStore:
    closed = False

    def sweep_expired(self):
        raise StoreError("locked")

    def close(self):
        self.closed = True


def test_main_exit_code_on_store_error(monkeypatch):
    broken = BrokenStore()
    monkeypatch.setattr(clean_cache, "open_store", lambda: broken)

    assert clean_cache.main([]) == 1
    assert broken.closed


def test_main_sqlite(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(clean_cache.settings, "cache_database_url", None)
    monkeypatch.setattr(clean_cache.settings, "cache_db_path", str(tmp_path / "cache.db"))

    assert clean_cache.main(["--stats"]) == 0
    assert capsys.readouterr().out.splitlines() == ["deleted=0", "valid=0 expired=0 total=0"]


def test_rejects_unknown_flag():
    with pytest.raises(SystemExit):
        clean_cache.main(["--bogus"])
