"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from rank_platform.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_store(monkeypatch, session_factory, store):
    """Point the CLI's default store at the test database."""
    monkeypatch.setattr("rank_platform.database.store.SessionLocal", session_factory)
    monkeypatch.setattr("rank_platform.database.models.init_db", lambda bind=None: None)
    return store


class TestGridCommand:
    """Tests for the grid preview."""

    def test_grid_json(self, runner):
        """The grid is printed as JSON."""
        result = runner.invoke(cli, ["grid", "--center", "38.8048,-77.0469", "-n", "3", "--json"])
        assert result.exit_code == 0
        cells = json.loads(result.output)
        assert [c["id"] for c in cells] == list(range(1, 10))

    def test_grid_table(self, runner):
        """The grid is printed as a table by default."""
        result = runner.invoke(cli, ["grid", "--center", "38.8048,-77.0469", "-n", "2"])
        assert result.exit_code == 0
        assert "4 cells" in result.output

    def test_bad_center(self, runner):
        """Malformed coordinates are a usage error."""
        result = runner.invoke(cli, ["grid", "--center", "nowhere"])
        assert result.exit_code == 2

    def test_degenerate_grid(self, runner):
        """A 1x1 grid is rejected."""
        result = runner.invoke(cli, ["grid", "--center", "38.8,-77.0", "-n", "1"])
        assert result.exit_code == 1
        assert "grid_size" in result.output


class TestCampaignCommands:
    """Tests for campaign seeding, scanning and reporting."""

    def test_init_creates_campaign(self, runner, cli_store):
        """init --name creates a campaign."""
        result = runner.invoke(cli, [
            "init", "--name", "Alexandria", "--business", "Common Notary Apostille",
            "--center", "38.8048,-77.0469", "--grid-size", "3",
        ])
        assert result.exit_code == 0
        assert "Created campaign" in result.output
        assert cli_store.active_campaign_ids() == [1]

    def test_scan_and_report(self, runner, cli_store, campaign_id):
        """A scan followed by a report shows the keywords."""
        scan = runner.invoke(cli, ["scan", str(campaign_id)])
        assert scan.exit_code == 0, scan.output
        assert "mobile notary" in scan.output

        report = runner.invoke(cli, ["report", str(campaign_id)])
        assert report.exit_code == 0
        assert "apostille services" in report.output

        chart = runner.invoke(cli, ["report", str(campaign_id), "--json"])
        data = json.loads(chart.output)
        assert data["keywords"] == ["apostille services", "mobile notary"]
        assert len(data["dates"]) == 1

    def test_report_missing_campaign(self, runner, cli_store):
        """Reporting on an unknown campaign fails cleanly."""
        result = runner.invoke(cli, ["report", "42"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_add_keyword(self, runner, cli_store, campaign_id):
        """Keywords can be added from the command line."""
        result = runner.invoke(cli, ["add-keyword", str(campaign_id), "notary near me", "--primary"])
        assert result.exit_code == 0
        keywords = [k.text for k in cli_store.load_campaign(campaign_id).keywords]
        assert "notary near me" in keywords
