"""Tests for the command-line interface."""

import re

import pytest
from click.testing import CliRunner

from cupcore.cli import cli

TEAMS_CSV = """name,seed,players
Dynamo,1,Ivan Petrov; Oleg Sidorov
Torpedo,2,Pavel Orlov
Spartak,3,
Zenit,4,
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_args(tmp_path):
    return ["--db", str(tmp_path / "cup.sqlite")]


@pytest.fixture
def tournament(runner, db_args, tmp_path):
    """Create a tournament with four imported teams; returns its ID."""
    result = runner.invoke(cli, db_args + ["create-tournament", "--title", "Spring Cup", "--start-date", "2025-04-05"])
    assert result.exit_code == 0, result.output
    tournament_id = int(re.search(r"Created tournament (\d+)", result.output).group(1))

    csv_path = tmp_path / "teams.csv"
    csv_path.write_text(TEAMS_CSV, encoding="utf-8")
    result = runner.invoke(cli, db_args + ["import-teams", "--tournament", str(tournament_id), "--csv", str(csv_path)])
    assert result.exit_code == 0, result.output
    assert "[SUCCESS] Enrolled 4 teams" in result.output
    return tournament_id


def test_init_db(runner, db_args, tmp_path):
    result = runner.invoke(cli, db_args + ["init-db"])

    assert result.exit_code == 0
    assert "[SUCCESS] Database ready" in result.output
    assert (tmp_path / "cup.sqlite").exists()


def test_bracket_and_results_flow(runner, db_args, tournament):
    result = runner.invoke(cli, db_args + [
        "generate-bracket", "--tournament", str(tournament), "--legs", "2", "--matches",
    ])
    assert result.exit_code == 0, result.output
    assert "SEMIFINAL: Dynamo vs Zenit (2 leg(s))" in result.output
    assert "SEMIFINAL: Torpedo vs Spartak (2 leg(s))" in result.output
    assert "FINAL: (to be decided)" in result.output

    result = runner.invoke(cli, db_args + ["finish-match", "--match", "1"])
    assert result.exit_code == 0, result.output
    assert "Match 1 finished 0-0" in result.output

    result = runner.invoke(cli, db_args + ["recalc-tie", "--tie", "1"])
    assert result.exit_code == 0, result.output
    assert "0-0 (no winner)" in result.output

    result = runner.invoke(cli, db_args + ["recompute-discipline", "--tournament", str(tournament)])
    assert result.exit_code == 0, result.output
    assert "0 suspension(s)" in result.output

    result = runner.invoke(cli, db_args + ["publish-roster", "--match", "1", "--team", "1"])
    assert result.exit_code == 0, result.output
    assert "[SUCCESS] Published 0 players" in result.output


def test_regenerate_with_reset(runner, db_args, tournament):
    args = db_args + ["generate-bracket", "--tournament", str(tournament)]
    assert runner.invoke(cli, args).exit_code == 0

    result = runner.invoke(cli, args + ["--reset", "--mode", "explicit", "--pair", "1,2", "--pair", "3,4"])
    assert result.exit_code == 0, result.output
    assert "Dynamo vs Torpedo" in result.output
    assert "Dynamo vs Zenit" not in result.output


def test_group_schedule(runner, db_args, tournament):
    result = runner.invoke(cli, db_args + [
        "create-group", "--tournament", str(tournament), "--name", "A",
        "--team", "1", "--team", "2", "--team", "3", "--team", "4",
    ])
    assert result.exit_code == 0, result.output
    group_id, round_id = re.search(r"\(id (\d+)\) in round (\d+)", result.output).groups()

    result = runner.invoke(cli, db_args + [
        "generate-schedule", "--group", group_id, "--round", round_id, "--double",
    ])
    assert result.exit_code == 0, result.output
    assert "[SUCCESS] Created 12 matches" in result.output


def test_engine_errors_abort(runner, db_args):
    result = runner.invoke(cli, db_args + ["generate-bracket", "--tournament", "99"])
    assert result.exit_code != 0
    assert "Tournament 99 not found" in result.output

    result = runner.invoke(cli, db_args + ["finish-match", "--match", "5"])
    assert result.exit_code != 0
    assert "Match 5 not found" in result.output


def test_invalid_pair_value(runner, db_args, tournament):
    result = runner.invoke(cli, db_args + [
        "generate-bracket", "--tournament", str(tournament), "--mode", "EXPLICIT", "--pair", "one,two",
    ])
    assert result.exit_code != 0
    assert "Invalid --pair value" in result.output


def test_bad_config_file(runner, tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("log_level: CHATTY\n", encoding="utf-8")

    result = runner.invoke(cli, ["--config", str(config), "init-db"])

    assert result.exit_code != 0
    assert "Configuration Error" in result.output


def test_config_file_sets_database(runner, tmp_path):
    config = tmp_path / "config.yaml"
    db_path = tmp_path / "from_config.sqlite"
    config.write_text(f"database: {db_path}\ndiscipline:\n  yellow_to_suspend: 3\n", encoding="utf-8")

    result = runner.invoke(cli, ["--config", str(config), "init-db"])

    assert result.exit_code == 0, result.output
    assert db_path.exists()


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_command_names(runner):
    result = runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    for name in (
        "init-db", "create-tournament", "import-teams", "generate-bracket", "create-group",
        "generate-schedule", "recalc-tie", "finish-match", "recompute-discipline", "publish-roster",
    ):
        assert name in cli.commands
        assert name in result.output


def test_sessions_are_closed(runner, db_args, monkeypatch):
    from cupcore.storage import DatabaseManager

    opened, closed = [], []
    original = DatabaseManager.get_session

    def tracking_session(self):
        session = original(self)
        real_close = session.close

        def close():
            closed.append(session)
            real_close()

        session.close = close
        opened.append(session)
        return session

    monkeypatch.setattr(DatabaseManager, "get_session", tracking_session)

    assert runner.invoke(cli, db_args + ["create-tournament", "--title", "Closing Cup"]).exit_code == 0
    assert runner.invoke(cli, db_args + ["finish-match", "--match", "7"]).exit_code != 0

    assert len(opened) == 2
    assert all(session in closed for session in opened)
