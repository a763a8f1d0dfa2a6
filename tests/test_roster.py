"""Tests for enrollment, roster management and lineup publication."""

from datetime import datetime, timedelta

import pytest

from cupcore.models import DisciplinePolicy, EventType, RoleFilter, RosterEntry, RosterRole, TeamFormat
from cupcore.results import record_event
from cupcore.roster import (
    add_roster_item,
    enroll_team,
    enrolled_teams,
    list_roster,
    publish_roster,
    remove_roster_item,
    replace_roster,
    set_captain,
    withdraw_team,
)
from cupcore.storage import ParticipantRepository, RosterRepository, TournamentTeamRepository
from cupcore.validation import NotFoundError, ValidationError

D1 = datetime(2025, 4, 5, 15, 0)
D2 = D1 + timedelta(days=7)
D3 = D2 + timedelta(days=7)

SUB = RosterRole.SUBSTITUTE


def club_players(factory, tt, count):
    return [factory.player(tt.team, "Squad", f"Member{i}") for i in range(1, count + 1)]


# ── Enrollment ───────────────────────────────────────────────────────────────


def test_enroll_and_update_seed(session, factory):
    tournament = factory.tournament()
    club = factory.club("Riverside")

    tt = enroll_team(session, tournament.id, club.id, seed=3)
    again = enroll_team(session, tournament.id, club.id, seed=1)

    assert again.id == tt.id
    assert again.seed == 1
    assert len(enrolled_teams(session, tournament.id)) == 1


def test_enroll_rejects_bad_seed_and_unknown_ids(session, factory):
    tournament = factory.tournament()
    club = factory.club("Riverside")

    with pytest.raises(ValidationError, match="seed"):
        enroll_team(session, tournament.id, club.id, seed=0)
    with pytest.raises(NotFoundError):
        enroll_team(session, 999, club.id)
    with pytest.raises(NotFoundError):
        enroll_team(session, tournament.id, 999)


def test_enrolled_teams_order(session, factory):
    tournament = factory.tournament()
    unseeded = factory.enroll(tournament, "Unseeded")
    second = factory.enroll(tournament, "Second", seed=2)
    first = factory.enroll(tournament, "First", seed=1)

    assert [tt.id for tt in enrolled_teams(session, tournament.id)] == [first.id, second.id, unseeded.id]


def test_withdraw_removes_roster(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Leaving")
    factory.roster(tt, 4)
    tt_id, club_id = tt.id, tt.team_id

    withdraw_team(session, tournament.id, club_id)

    assert TournamentTeamRepository(session).get(tournament.id, club_id) is None
    assert RosterRepository(session).get_by_team(tt_id) == []


def test_withdraw_rejected_once_fixtures_exist(session, factory):
    tournament = factory.tournament()
    home, away = factory.enroll_many(tournament, 2)
    factory.match(tournament, home, away, D1)

    with pytest.raises(ValidationError, match="already has"):
        withdraw_team(session, tournament.id, home.team_id)
    with pytest.raises(NotFoundError):
        withdraw_team(session, tournament.id, 999)


# ── Roster management ────────────────────────────────────────────────────────


def test_list_roster_order(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Ordered")
    p1, p2, p3, p4 = club_players(factory, tt, 4)

    sub = add_roster_item(session, tt.id, p1.id, number=1, role=SUB)
    unnumbered = add_roster_item(session, tt.id, p2.id)
    ten = add_roster_item(session, tt.id, p3.id, number=10)
    three = add_roster_item(session, tt.id, p4.id, number=3)

    assert [r.id for r in list_roster(session, tt.id)] == [three.id, ten.id, unnumbered.id, sub.id]
    assert [r.id for r in list_roster(session, tt.id, starters_only=True)] == [
        three.id, ten.id, unnumbered.id,
    ]


def test_replace_roster(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Replacing")
    old_player_ids = {r.player_id for r in factory.roster(tt, 3)}
    p1, p2, p3 = club_players(factory, tt, 3)

    roster = replace_roster(
        session,
        tt.id,
        [
            RosterEntry(p1.id, number=9, position="FW"),
            RosterEntry(p2.id, number=1, position="GK"),
            RosterEntry(p3.id, number=12, role=SUB),
        ],
        captain_player_id=p2.id,
    )

    assert [r.player_id for r in roster] == [p2.id, p1.id, p3.id]
    assert not {r.player_id for r in roster} & old_player_ids
    captain = RosterRepository(session).get_by_player(tt.id, p2.id)
    assert TournamentTeamRepository(session).get_by_id(tt.id).captain_roster_item_id == captain.id


def test_replace_roster_clears_captain_when_not_given(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Captainless")
    (item,) = factory.roster(tt, 1)
    set_captain(session, tt.id, roster_item_id=item.id)
    (player,) = club_players(factory, tt, 1)

    replace_roster(session, tt.id, [RosterEntry(player.id)])

    assert TournamentTeamRepository(session).get_by_id(tt.id).captain_roster_item_id is None


def test_replace_roster_rejects_invalid_input(session, factory):
    tournament = factory.tournament(team_format=TeamFormat.FIVE)
    tt = factory.enroll(tournament, "Strict")
    outsider_tt = factory.enroll(tournament, "Outsiders")
    existing = factory.roster(tt, 2)
    players = club_players(factory, tt, 6)
    (outsider,) = club_players(factory, outsider_tt, 1)

    with pytest.raises(ValidationError, match="does not belong"):
        replace_roster(session, tt.id, [RosterEntry(outsider.id)])
    with pytest.raises(ValidationError, match="more than once"):
        replace_roster(session, tt.id, [RosterEntry(players[0].id), RosterEntry(players[0].id)])
    with pytest.raises(ValidationError, match="Too many starters"):
        replace_roster(session, tt.id, [RosterEntry(p.id) for p in players])
    with pytest.raises(ValidationError, match="not on the new roster"):
        replace_roster(session, tt.id, [RosterEntry(players[0].id)], captain_player_id=players[1].id)
    with pytest.raises(NotFoundError):
        replace_roster(session, tt.id, [RosterEntry(999)])

    # Nothing was written
    assert [r.id for r in RosterRepository(session).get_by_team(tt.id)] == [r.id for r in existing]


def test_replace_roster_allows_extra_substitutes(session, factory):
    tournament = factory.tournament(team_format=TeamFormat.FIVE)
    tt = factory.enroll(tournament, "Deep Bench")
    players = club_players(factory, tt, 8)

    entries = [RosterEntry(p.id, role=RosterRole.STARTER if i < 5 else SUB) for i, p in enumerate(players)]
    roster = replace_roster(session, tt.id, entries)

    assert len(roster) == 8


def test_add_roster_item_updates_existing_entry(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Updating")
    (player,) = club_players(factory, tt, 1)

    first = add_roster_item(session, tt.id, player.id, number=4)
    second = add_roster_item(session, tt.id, player.id, number=5, position="DF", role=SUB)

    assert second.id == first.id
    assert (second.number, second.position, second.role) == (5, "DF", "SUBSTITUTE")
    assert len(list_roster(session, tt.id)) == 1


def test_add_roster_item_starter_limit(session, factory):
    tournament = factory.tournament(team_format=TeamFormat.FIVE)
    tt = factory.enroll(tournament, "Five-a-side")
    starters = factory.roster(tt, 5)
    (extra,) = club_players(factory, tt, 1)

    with pytest.raises(ValidationError, match="maximum: 5"):
        add_roster_item(session, tt.id, extra.id)

    add_roster_item(session, tt.id, extra.id, role=SUB)
    # Re-saving an existing starter does not count it twice
    add_roster_item(session, tt.id, starters[0].player_id, number=99)


def test_add_roster_item_rejects_other_club_player(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Home")
    other = factory.enroll(tournament, "Away")
    (player,) = club_players(factory, other, 1)

    with pytest.raises(ValidationError):
        add_roster_item(session, tt.id, player.id)
    with pytest.raises(ValidationError, match="Unknown roster role"):
        add_roster_item(session, other.id, player.id, role="COACH")


def test_remove_roster_item_clears_captain(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Captained")
    item, _ = factory.roster(tt, 2)
    set_captain(session, tt.id, roster_item_id=item.id)

    remove_roster_item(session, tt.id, item.player_id)

    assert TournamentTeamRepository(session).get_by_id(tt.id).captain_roster_item_id is None
    assert len(list_roster(session, tt.id)) == 1
    with pytest.raises(NotFoundError):
        remove_roster_item(session, tt.id, item.player_id)


def test_set_captain(session, factory):
    tournament = factory.tournament()
    tt = factory.enroll(tournament, "Leaders")
    other = factory.enroll(tournament, "Others")
    first, second = factory.roster(tt, 2)
    (foreign,) = factory.roster(other, 1)

    assert set_captain(session, tt.id, roster_item_id=first.id).captain_roster_item_id == first.id
    assert set_captain(session, tt.id, player_id=second.player_id).captain_roster_item_id == second.id
    assert set_captain(session, tt.id).captain_roster_item_id is None

    with pytest.raises(ValidationError):
        set_captain(session, tt.id, roster_item_id=foreign.id)
    with pytest.raises(ValidationError, match="not on the roster"):
        set_captain(session, tt.id, player_id=foreign.player_id)


# ── Lineup publication ───────────────────────────────────────────────────────


@pytest.fixture
def fixture_pair(factory):
    tournament = factory.tournament(policy=DisciplinePolicy())
    home, away = factory.enroll_many(tournament, 2)
    home_items = factory.roster(home, 3, first_number=2) + factory.roster(home, 1, role=SUB, first_number=12)
    away_items = factory.roster(away, 3)
    return tournament, home, away, home_items, away_items


def lineup(session, match, tt):
    return [p.roster_item_id for p in ParticipantRepository(session).get_by_match_and_team(match.id, tt.id)]


def test_publish_copies_roster_in_order(session, factory, fixture_pair):
    tournament, home, away, home_items, _ = fixture_pair
    set_captain(session, home.id, roster_item_id=home_items[1].id)
    match = factory.match(tournament, home, away, D2)

    published = publish_roster(session, match.id, home.id)

    assert published == [item.id for item in home_items]
    rows = ParticipantRepository(session).get_by_match_and_team(match.id, home.id)
    assert [row.order_index for row in rows] == [2, 3, 4, 12]
    assert [row.role for row in rows] == ["STARTER", "STARTER", "STARTER", "SUBSTITUTE"]
    assert [row.is_captain for row in rows] == [False, True, False, False]


def test_publish_excludes_suspended_players(session, factory, fixture_pair, notifier):
    tournament, home, away, home_items, _ = fixture_pair
    sent_off = home_items[0]
    m1 = factory.match(tournament, home, away, D1)
    record_event(session, m1.id, home.id, EventType.RED_CARD, roster_item_id=sent_off.id)
    m2 = factory.match(tournament, away, home, D2)

    published = publish_roster(session, m2.id, home.id, notifier=notifier)

    assert sent_off.id not in published
    assert len(published) == 3
    assert sent_off.id not in lineup(session, m2, home)
    assert notifier.messages == [
        ("tmatch:lineup", {
            "match_id": m2.id,
            "tournament_team_id": home.id,
            "roster_item_ids": published,
            "suspended_roster_item_ids": [sent_off.id],
        }),
    ]


def test_publish_includes_player_suspended_only_later(session, factory, fixture_pair):
    tournament, home, away, home_items, _ = fixture_pair
    m2 = factory.match(tournament, home, away, D2)
    m3 = factory.match(tournament, away, home, D3)
    record_event(session, m3.id, home.id, EventType.RED_CARD, roster_item_id=home_items[0].id)

    assert home_items[0].id in publish_roster(session, m2.id, home.id)


def test_publish_starters_only(session, factory, fixture_pair):
    tournament, home, away, home_items, _ = fixture_pair
    match = factory.match(tournament, home, away, D2)

    published = publish_roster(session, match.id, home.id, role_filter=RoleFilter.STARTER)

    assert published == [item.id for item in home_items[:3]]


def test_publish_reset_replaces_only_own_lineup(session, factory, fixture_pair):
    tournament, home, away, home_items, away_items = fixture_pair
    match = factory.match(tournament, home, away, D2)
    publish_roster(session, match.id, home.id)
    publish_roster(session, match.id, away.id)

    publish_roster(session, match.id, home.id, role_filter=RoleFilter.STARTER, reset=True)

    assert lineup(session, match, home) == [item.id for item in home_items[:3]]
    assert lineup(session, match, away) == [item.id for item in away_items]


def test_publish_without_reset_keeps_and_does_not_duplicate(session, factory, fixture_pair):
    tournament, home, away, home_items, _ = fixture_pair
    match = factory.match(tournament, home, away, D2)
    publish_roster(session, match.id, home.id, role_filter=RoleFilter.STARTER)

    publish_roster(session, match.id, home.id, reset=False)
    publish_roster(session, match.id, home.id, reset=False)

    assert lineup(session, match, home) == [item.id for item in home_items]


def test_publish_without_reset_drops_newly_suspended_players(session, factory, fixture_pair):
    tournament, home, away, home_items, _ = fixture_pair
    m1 = factory.match(tournament, home, away, D1)
    m2 = factory.match(tournament, away, home, D2)
    publish_roster(session, m2.id, home.id)

    # Sent off in the earlier match after the lineup went out
    record_event(session, m1.id, home.id, EventType.RED_CARD, roster_item_id=home_items[0].id)
    record_event(session, m1.id, home.id, EventType.RED_CARD, roster_item_id=home_items[3].id)
    published = publish_roster(session, m2.id, home.id, role_filter=RoleFilter.STARTER, reset=False)

    assert published == [home_items[1].id, home_items[2].id]
    assert lineup(session, m2, home) == [home_items[1].id, home_items[2].id]


def test_publish_rejects_team_outside_match(session, factory, fixture_pair):
    tournament, home, away, _, _ = fixture_pair
    bystander = factory.enroll(tournament, "Bystander")
    match = factory.match(tournament, home, away, D2)
    other_cup = factory.tournament("Other Cup")
    foreign = factory.enroll(other_cup, "Foreign")

    with pytest.raises(ValidationError, match="does not play"):
        publish_roster(session, match.id, bystander.id)
    with pytest.raises(ValidationError, match="not part of tournament"):
        publish_roster(session, match.id, foreign.id)
    with pytest.raises(NotFoundError):
        publish_roster(session, 999, home.id)
