"""Command-line interface for cupcore."""

import logging

import click

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _open_session(ctx):
    from cupcore.storage import DatabaseManager

    db = DatabaseManager(ctx.obj["config"]["database"])
    db.create_tables()
    session = db.get_session()
    ctx.call_on_close(session.close)
    return session


def _notifier():
    from cupcore.notify import LoggingNotifier

    return LoggingNotifier(logging.getLogger("cupcore.events"))


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "config_path", required=False, help="Path to config YAML file")
@click.option("--db", required=False, help="Database path (overrides the config file)")
@click.pass_context
def cli(ctx, config_path: str, db: str):
    """cupcore - competition engine for team tournaments."""
    from cupcore.config_loader import ConfigError, default_config, load_and_validate_config

    try:
        cfg = load_and_validate_config(config_path) if config_path else default_config()
    except ConfigError as e:
        click.echo(f"[ERROR] Configuration Error: {e}", err=True)
        raise click.Abort()

    if db:
        cfg["database"] = db
    logging.basicConfig(level=getattr(logging, cfg["log_level"]), format=LOG_FORMAT)
    ctx.obj = {"config": cfg}


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the database tables.

    Example:
        cupcore --db data/cup.sqlite init-db
    """
    _open_session(ctx)
    click.echo(f"[SUCCESS] Database ready: {ctx.obj['config']['database']}")


@cli.command("create-tournament")
@click.option("--title", required=True, help="Tournament title")
@click.option("--format", "team_format", default="11x11",
              type=click.Choice(["5x5", "6x6", "7x7", "8x8", "11x11"]), help="Team format")
@click.option("--start-date", type=click.DateTime(formats=["%Y-%m-%d"]), required=False)
@click.option("--season", required=False)
@click.pass_context
def create_tournament(ctx, title: str, team_format: str, start_date, season: str):
    """Create a tournament using the configured discipline policy.

    Example:
        cupcore create-tournament --title "Spring Cup" --format 7x7 --start-date 2025-04-01
    """
    from cupcore.models import TeamFormat
    from cupcore.storage import TournamentRepository, atomic

    session = _open_session(ctx)
    with atomic(session):
        tournament = TournamentRepository(session).create(
            title,
            start_date=start_date,
            team_format=TeamFormat(team_format),
            policy=ctx.obj["config"]["discipline"],
            season=season,
        )
    click.echo(f"[SUCCESS] Created tournament {tournament.id}: {tournament.title}")


@cli.command("import-teams")
@click.option("--tournament", "tournament_id", type=int, required=True, help="Tournament ID")
@click.option("--csv", "csv_path", required=True, help="Path to teams CSV file")
@click.pass_context
def import_teams(ctx, tournament_id: int, csv_path: str):
    """Import and enroll teams from a CSV file.

    CSV must have a 'name' column; 'seed' and 'players' are optional.

    Example:
        cupcore import-teams --tournament 1 --csv data/teams.csv
    """
    from cupcore.io_csv import CSVImportError, import_teams_csv, register_teams
    from cupcore.validation import EngineError

    try:
        click.echo(f"[INFO] Reading CSV file: {csv_path}")
        registrations = import_teams_csv(csv_path)
        if not registrations:
            click.echo("[WARNING]  No teams to import")
            return

        session = _open_session(ctx)
        enrolled = register_teams(session, tournament_id, registrations)
        for tt in enrolled:
            seed = f"[{tt.seed}] " if tt.seed else ""
            click.echo(f"  {seed}{tt.name}")
        click.echo(f"[SUCCESS] Enrolled {len(enrolled)} teams")

    except (CSVImportError, EngineError) as e:
        click.echo(f"[ERROR] Import Error: {e}", err=True)
        raise click.Abort()


@cli.command("generate-bracket")
@click.option("--tournament", "tournament_id", type=int, required=True, help="Tournament ID")
@click.option("--mode", type=click.Choice(["SEEDED", "RANDOM", "EXPLICIT"], case_sensitive=False),
              default="SEEDED")
@click.option("--legs", type=int, default=1, help="Legs per tie")
@click.option("--pair", "pairs", multiple=True, help="Explicit pair as TEAM_ID,TEAM_ID (repeatable)")
@click.option("--third-place/--no-third-place", default=False)
@click.option("--matches/--no-matches", "materialize", default=False, help="Create leg matches")
@click.option("--reset", is_flag=True, default=False, help="Delete the existing bracket first")
@click.option("--start-date", type=click.DateTime(formats=["%Y-%m-%d"]), required=False)
@click.option("--leg-gap-days", type=int, default=7)
@click.pass_context
def generate_bracket(ctx, tournament_id, mode, legs, pairs, third_place, materialize, reset,
                     start_date, leg_gap_days):
    """Generate the knockout bracket.

    Example:
        cupcore generate-bracket --tournament 1 --legs 2 --matches --third-place
    """
    from cupcore import bracket
    from cupcore.models import BracketMode
    from cupcore.validation import EngineError

    try:
        pair_list = []
        for raw in pairs:
            a, _, b = raw.partition(",")
            pair_list.append((int(a), int(b)))
    except ValueError:
        click.echo("[ERROR] Invalid --pair value, expected TEAM_ID,TEAM_ID", err=True)
        raise click.Abort()

    session = _open_session(ctx)
    try:
        ties = bracket.generate_bracket(
            session,
            tournament_id,
            mode=BracketMode(mode.upper()),
            legs=legs,
            include_third_place=third_place,
            materialize_matches=materialize,
            pairs=pair_list or None,
            reset=reset,
            start_date=start_date,
            leg_gap_days=leg_gap_days,
            random_seed=ctx.obj["config"]["random_seed"],
            notifier=_notifier(),
        )
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()

    click.echo("\n[STATS] Bracket Summary:")
    for tie in ties:
        if tie.is_placeholder:
            click.echo(f"  {tie.round.name}: (to be decided)")
        else:
            click.echo(f"  {tie.round.name}: {tie.team1.name} vs {tie.team2.name} ({tie.legs} leg(s))")
    click.echo("\n[DONE] Bracket generated successfully!")


@cli.command("create-group")
@click.option("--tournament", "tournament_id", type=int, required=True, help="Tournament ID")
@click.option("--name", required=True, help="Group name (A, B, ...)")
@click.option("--team", "team_ids", type=int, multiple=True, required=True,
              help="Tournament team ID, in scheduling order (repeatable)")
@click.option("--round", "round_id", type=int, required=False,
              help="Existing round ID (a GROUP round is created if omitted)")
@click.pass_context
def create_group(ctx, tournament_id: int, name: str, team_ids, round_id: int):
    """Create a round-robin group.

    Example:
        cupcore create-group --tournament 1 --name A --team 1 --team 2 --team 3 --team 4
    """
    from cupcore.models import Stage
    from cupcore.storage import (
        GroupRepository,
        RoundRepository,
        TournamentRepository,
        TournamentTeamRepository,
        atomic,
    )
    from cupcore.validation import EngineError

    session = _open_session(ctx)
    tt_repo = TournamentTeamRepository(session)
    try:
        TournamentRepository(session).get_required(tournament_id)
        for tt_id in team_ids:
            if tt_repo.get_required(tt_id).tournament_id != tournament_id:
                click.echo(f"[ERROR] Tournament team {tt_id} is not in tournament {tournament_id}", err=True)
                raise click.Abort()
        with atomic(session):
            round_repo = RoundRepository(session)
            if round_id is None:
                round_orm = round_repo.create(tournament_id, Stage.GROUP, name=f"Group {name}")
            else:
                round_orm = round_repo.get_required(round_id)
            group = GroupRepository(session).create(tournament_id, name, list(team_ids), round_orm.id)
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()

    click.echo(f"[SUCCESS] Created group {group.name} (id {group.id}) in round {round_orm.id}")


@cli.command("generate-schedule")
@click.option("--group", "group_id", type=int, required=True, help="Group ID")
@click.option("--round", "round_id", type=int, required=True, help="Round ID")
@click.option("--double/--single", default=False, help="Double round robin")
@click.option("--start-date", type=click.DateTime(formats=["%Y-%m-%d"]), required=False)
@click.option("--gap-days", type=int, default=7, help="Days between matchdays")
@click.pass_context
def generate_schedule(ctx, group_id, round_id, double, start_date, gap_days):
    """Create round-robin matches for a group.

    Example:
        cupcore generate-schedule --group 1 --round 3 --double
    """
    from cupcore.schedule import generate_group_schedule
    from cupcore.validation import EngineError

    session = _open_session(ctx)
    try:
        count = generate_group_schedule(
            session,
            group_id,
            round_id,
            rounds=2 if double else 1,
            start_date=start_date,
            match_gap_days=gap_days,
            notifier=_notifier(),
        )
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] Created {count} matches")


@cli.command("recalc-tie")
@click.option("--tie", "tie_id", type=int, required=True, help="Tie ID")
@click.pass_context
def recalc_tie(ctx, tie_id: int):
    """Recompute a tie's aggregate and winner."""
    from cupcore.ties import recalc_tie as recalc
    from cupcore.validation import EngineError

    session = _open_session(ctx)
    try:
        result = recalc(session, tie_id, notifier=_notifier())
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] {result}")


@cli.command("finish-match")
@click.option("--match", "match_id", type=int, required=True, help="Match ID")
@click.pass_context
def finish_match(ctx, match_id: int):
    """Finish a match, update its tie and serve suspensions."""
    from cupcore.results import finish_match as finish
    from cupcore.validation import EngineError

    session = _open_session(ctx)
    try:
        match = finish(session, match_id, notifier=_notifier())
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] Match {match.id} finished {match.team1_score}-{match.team2_score}")


@cli.command("recompute-discipline")
@click.option("--tournament", "tournament_id", type=int, required=True, help="Tournament ID")
@click.pass_context
def recompute_discipline(ctx, tournament_id: int):
    """Rebuild all suspensions of a tournament from its card history."""
    from cupcore.discipline import recompute_all
    from cupcore.validation import EngineError

    session = _open_session(ctx)
    try:
        created = recompute_all(session, tournament_id, notifier=_notifier())
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] {created} suspension(s) after recompute")


@cli.command("publish-roster")
@click.option("--match", "match_id", type=int, required=True, help="Match ID")
@click.option("--team", "tournament_team_id", type=int, required=True, help="Tournament team ID")
@click.option("--starters-only", is_flag=True, default=False)
@click.option("--keep/--reset", "keep", default=False, help="Keep already published players")
@click.pass_context
def publish_roster(ctx, match_id: int, tournament_team_id: int, starters_only: bool, keep: bool):
    """Publish a team's roster to a match, leaving out suspended players."""
    from cupcore.models import RoleFilter
    from cupcore.roster import publish_roster as publish
    from cupcore.validation import EngineError

    session = _open_session(ctx)
    try:
        published = publish(
            session,
            match_id,
            tournament_team_id,
            role_filter=RoleFilter.STARTER if starters_only else RoleFilter.ALL,
            reset=not keep,
            notifier=_notifier(),
        )
    except EngineError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] Published {len(published)} players")


if __name__ == "__main__":
    cli()
