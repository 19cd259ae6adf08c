import json

import sync_kijiji
from kijijimap.models import RawAd


class StaticSource:
    def __init__(self, timeout=20):
        self.timeout = timeout

    def search(self, criteria):
        return [
            RawAd(
                id="42",
                title="Corner unit",
                url="https://www.kijiji.ca/v-x/42",
                attributes={"location": {"latitude": 43.6, "longitude": -79.4}},
            )
        ]

    def fetch_detail(self, summary):
        raise AssertionError("not expected")


def test_init_run_and_export(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/cli.db")
    monkeypatch.delenv("SLACK_WEBHOOK", raising=False)
    monkeypatch.setattr(sync_kijiji, "KijijiAdSource", StaticSource)

    assert sync_kijiji.main(["--init"]) == 0
    assert sync_kijiji.main(["--run", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["success"] is True
    assert payload["added"] == 1

    export_path = tmp_path / "listings.xlsx"
    assert sync_kijiji.main(["--export", str(export_path)]) == 0
    assert export_path.exists()


def test_run_without_init_reports_failure(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/missing.db")
    monkeypatch.setattr(sync_kijiji, "KijijiAdSource", StaticSource)

    assert sync_kijiji.main(["--run", "--json"]) == 1
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["success"] is False


def test_no_action_prints_help(capsys):
    assert sync_kijiji.main([]) == 1
    assert "usage" in capsys.readouterr().out
