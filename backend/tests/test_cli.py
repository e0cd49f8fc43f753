"""Tests for the operator CLI."""

from decimal import Decimal

import pytest
from typer.testing import CliRunner

from refengine import cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_database(database, monkeypatch):
    monkeypatch.setattr(cli, "db", database)
    return database


def test_seed_tiers_installs_default_ladder():
    result = runner.invoke(cli.app, ["seed-tiers"])

    assert result.exit_code == 0
    assert "Installed 6 tiers" in result.output
    assert "Legend" in result.output


def test_recalculate_tier_reports_errors():
    result = runner.invoke(cli.app, ["recalculate-tier", "ghost@x.io"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_run_payouts_review_mode(make_account, monkeypatch, gateway):
    monkeypatch.setattr(cli, "StripeGateway", lambda: gateway)
    make_account(
        "a@x.io",
        total_earnings=Decimal("75"),
        payout_destination_id="acct_a",
        payout_destination_status="verified",
    )

    result = runner.invoke(cli.app, ["run-payouts", "--threshold", "50", "--review"])

    assert result.exit_code == 0
    assert gateway.transfers == []
    assert "pending review" in result.output
