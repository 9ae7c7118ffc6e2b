"""Tests for the SQLite change ledger."""

from sitepush.sync.ledger import ChangeLedger


class TestChangeLedger:
    def test_add_and_contains(self, tmp_path):
        with ChangeLedger(tmp_path / "changes.db") as ledger:
            ledger.add("/site/index.html")
            assert ledger.contains("/site/index.html")
            assert not ledger.contains("/site/other.html")

    def test_same_path_recorded_once(self, tmp_path):
        with ChangeLedger(tmp_path / "changes.db") as ledger:
            ledger.add("/site/index.html")
            ledger.add("/site/index.html")
            ledger.add_many(["/site/index.html", "/site/a.css"])
            assert ledger.count() == 2

    def test_persists_across_instances(self, tmp_path):
        db = tmp_path / "data" / "changes.db"
        with ChangeLedger(db) as ledger:
            ledger.add("/site/index.html")

        with ChangeLedger(db) as ledger:
            assert ledger.paths() == ["/site/index.html"]

    def test_clear(self, tmp_path):
        with ChangeLedger(tmp_path / "changes.db") as ledger:
            ledger.add_many(["/a", "/b"])
            assert ledger.clear() == 2
            assert ledger.count() == 0
            assert ledger.paths() == []

    def test_empty(self, tmp_path):
        with ChangeLedger(tmp_path / "changes.db") as ledger:
            assert ledger.paths() == []
            assert ledger.count() == 0
