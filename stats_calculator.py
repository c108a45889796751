#!/usr/bin/env python3
"""
Player and team statistics for doubles pickleball matches.

Everything here works on already-fetched match records and never touches the
database. Callers pass matches ordered newest first.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

LAST_N_MATCHES = 10
TOP_N = 3
HEAD_TO_HEAD_LIMIT = 5


class InvalidMatchRecord(ValueError):
    """Raised when a match record is missing a required field."""


@dataclass(frozen=True)
class PlayerRef:
    id: str
    name: Optional[str] = None
    profile_picture: Optional[str] = None

    @classmethod
    def from_value(cls, value):
        """Accept a PlayerRef, a bare id or a mapping with id/name/profilePicture"""
        if value is None or isinstance(value, PlayerRef):
            return value
        if isinstance(value, Mapping):
            player_id = value.get('id')
            if not player_id:
                return None
            return cls(
                id=str(player_id),
                name=value.get('name'),
                profile_picture=value.get('profilePicture', value.get('profile_picture')),
            )
        return cls(id=str(value))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'profilePicture': self.profile_picture,
        }


@dataclass(frozen=True)
class MatchRecord:
    """A single doubles match as seen by the aggregation functions.

    Player slots are optional: a record with a missing slot is still accepted
    and each computation decides whether it can use it.
    """
    id: str
    date: datetime
    team1_player_a: Optional[PlayerRef]
    team1_player_b: Optional[PlayerRef]
    team2_player_a: Optional[PlayerRef]
    team2_player_b: Optional[PlayerRef]
    team1_score_a: int
    team1_score_b: int
    team2_score_a: int
    team2_score_b: int
    winning_team: int

    def __post_init__(self):
        if not self.id:
            raise InvalidMatchRecord("match id is required")
        if not isinstance(self.date, datetime):
            raise InvalidMatchRecord(f"match {self.id}: date must be a datetime")
        if self.winning_team not in (1, 2):
            raise InvalidMatchRecord(
                f"match {self.id}: winning team must be 1 or 2, got {self.winning_team!r}")
        for name in ('team1_score_a', 'team1_score_b', 'team2_score_a', 'team2_score_b'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidMatchRecord(f"match {self.id}: {name} must be an integer")

    @classmethod
    def from_dict(cls, data):
        """Build a record from a camelCase mapping (API payloads, fixtures)"""
        if not isinstance(data, Mapping):
            raise InvalidMatchRecord(f"expected a mapping, got {type(data).__name__}")
        required =('id', 'date', 'winningTeam',
                    'team1ScoreA', 'team1ScoreB', 'team2ScoreA', 'team2ScoreB')
        missing = [key for key in required if data.get(key) is None]
        if missing:
            raise InvalidMatchRecord(f"missing required fields: {', '.join(missing)}")

        date = data['date']
        if isinstance(date, str):
            try:
                date = datetime.fromisoformat(date.replace('Z', '+00:00'))
            except ValueError:
                raise InvalidMatchRecord(f"invalid date: {data['date']!r}")
        if isinstance(date, datetime) and date.tzinfo is not None:
            # Stored dates are naive UTC
            date = date.astimezone(timezone.utc).replace(tzinfo=None)

        def slot(name):
            # Either an embedded player object or just the id column
            return PlayerRef.from_value(data.get(name) or data.get(name + 'Id'))

        return cls(
            id=str(data['id']),
            date=date,
            team1_player_a=slot('team1PlayerA'),
            team1_player_b=slot('team1PlayerB'),
            team2_player_a=slot('team2PlayerA'),
            team2_player_b=slot('team2PlayerB'),
            team1_score_a=data['team1ScoreA'],
            team1_score_b=data['team1ScoreB'],
            team2_score_a=data['team2ScoreA'],
            team2_score_b=data['team2ScoreB'],
            winning_team=data['winningTeam'],
        )

    def to_dict(self):
        def player(p):
            return p.to_dict() if p is not None else None

        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'team1PlayerA': player(self.team1_player_a),
            'team1PlayerB': player(self.team1_player_b),
            'team2PlayerA': player(self.team2_player_a),
            'team2PlayerB': player(self.team2_player_b),
            'team1ScoreA': self.team1_score_a,
            'team1ScoreB': self.team1_score_b,
            'team2ScoreA': self.team2_score_a,
            'team2ScoreB': self.team2_score_b,
            'winningTeam': self.winning_team,
        }

    def team_players(self, team):
        if team == 1:
            return (self.team1_player_a, self.team1_player_b)
        return (self.team2_player_a, self.team2_player_b)

    def team_ids(self, team):
        return tuple(p.id if p else None for p in self.team_players(team))

    def team_score(self, team):
        # Both players on a team carry the same recorded team score
        return self.team1_score_a if team == 1 else self.team2_score_a

    def team_for(self, player_id):
        """Return 1 or 2 for the player's team, or None if it can't be determined"""
        on_team1 = player_id in self.team_ids(1)
        on_team2 = player_id in self.team_ids(2)
        if on_team1 == on_team2:
            return None
        return 1 if on_team1 else 2


@dataclass
class PlayerStatSnapshot:
    total_matches: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0
    points_scored: int = 0
    points_conceded: int = 0
    last10_record: str = '0-0'
    current_streak: str = 'None'

    def to_dict(self):
        return {
            'totalMatches': self.total_matches,
            'wins': self.wins,
            'losses': self.losses,
            'winRate': self.win_rate,
            'pointsScored': self.points_scored,
            'pointsConceded': self.points_conceded,
            'last10Record': self.last10_record,
            'currentStreak': self.current_streak,
        }


@dataclass
class PartnerOrOpponentStat:
    key: str
    players: Tuple[PlayerRef, ...]
    matches: int = 0
    wins: int = 0
    losses: int = 0

    @property
    def win_percentage(self):
        return win_percentage(self.wins, self.matches)

    def to_dict(self):
        data = {
            'matches': self.matches,
            'wins': self.wins,
            'losses': self.losses,
            'winPercentage': self.win_percentage,
        }
        if len(self.players) == 1:
            data['player'] = self.players[0].to_dict()
        else:
            data['key'] = self.key
            data['players'] = [p.to_dict() for p in self.players]
        return data


@dataclass
class TeamStreak:
    key: str
    players: Tuple[PlayerRef, PlayerRef]
    streak: int = 0
    last_win_date: Optional[datetime] = None
    active: bool = True

    def to_dict(self):
        return {
            'key': self.key,
            'players': [p.to_dict() for p in self.players],
            'streak': self.streak,
            'active': self.active,
            'lastWinDate': self.last_win_date.isoformat() if self.last_win_date else None,
        }


def coerce_matches(rows: Iterable[Any]) -> List[MatchRecord]:
    """
    Turn mappings (or records) into MatchRecords, dropping the ones that
    don't validate. Order is preserved.
    """
    records = []
    for row in rows:
        if isinstance(row, MatchRecord):
            records.append(row)
            continue
        try:
            records.append(MatchRecord.from_dict(row))
        except InvalidMatchRecord as e:
            logger.warning(f"Skipping invalid match record: {e}")
    return records


def get_team_key(player_a_id, player_b_id):
    """Order-independent key for a pair of players"""
    return '-'.join(sorted([player_a_id, player_b_id]))


def win_percentage(wins, matches):
    """Win percentage rounded half-up to one decimal place"""
    if matches <= 0:
        return 0
    return int(wins * 1000 / matches + 0.5) / 10


def format_streak(outcomes):
    """
    Current streak from a newest-first sequence of outcomes (True = win),
    e.g. 'W3' or 'L1'. Returns 'None' for an empty sequence.
    """
    streak_type = None
    count = 0
    for won in outcomes:
        if streak_type is None:
            streak_type = won
            count = 1
        elif won == streak_type:
            count += 1
        else:
            break
    if streak_type is None:
        return 'None'
    return f"{'W' if streak_type else 'L'}{count}"


def player_outcomes(player_id: str, matches: Iterable[MatchRecord]):
    """Yield (match, team, won) for every match where the player's team is known"""
    for match in matches:
        team = match.team_for(player_id)
        if team is None:
            logger.debug(f"Player {player_id} has no team in match {match.id}, skipping")
            continue
        yield match, team, match.winning_team == team


def compute_player_stats(player_id: str, matches: Iterable[MatchRecord]) -> PlayerStatSnapshot:
    """
    Aggregate a player's record from their matches (newest first).

    Matches where the player can't be placed on exactly one team contribute
    nothing.
    """
    stats = PlayerStatSnapshot()
    outcomes = []

    for match, team, won in player_outcomes(player_id, matches):
        opponent = 2 if team == 1 else 1
        if won:
            stats.wins += 1
        else:
            stats.losses += 1
        stats.points_scored += match.team_score(team)
        stats.points_conceded += match.team_score(opponent)
        outcomes.append(won)

    stats.total_matches = stats.wins + stats.losses
    if stats.total_matches > 0:
        stats.win_rate = 100 * stats.wins / stats.total_matches

    recent = outcomes[:LAST_N_MATCHES]
    recent_wins = sum(1 for won in recent if won)
    stats.last10_record = f"{recent_wins}-{len(recent) - recent_wins}"
    stats.current_streak = format_streak(outcomes)

    return stats


def _tally(table, key, players, won):
    entry = table.get(key)
    if entry is None:
        entry = table[key] = PartnerOrOpponentStat(key=key, players=players)
    entry.matches += 1
    if won:
        entry.wins += 1
    else:
        entry.losses += 1


def _top(table, limit):
    # sorted() is stable, so ties keep first-seen order
    return sorted(table.values(), key=lambda entry: entry.matches, reverse=True)[:limit]


def compute_rankings(player_id: str, matches: Iterable[MatchRecord], limit: int = TOP_N) -> Dict[str, List[PartnerOrOpponentStat]]:
    """
    Rank the player's most frequent partners, individual opponents and
    opposing pairs by number of matches played.
    """
    partners = OrderedDict()
    opponents = OrderedDict()
    opponent_teams = OrderedDict()

    for match, team, won in player_outcomes(player_id, matches):
        own = match.team_players(team)
        others = match.team_players(2 if team == 1 else 1)

        teammates = [p for p in own if p is not None and p.id != player_id]
        if len(teammates) == 1 and None not in own:
            partner = teammates[0]
            _tally(partners, partner.id, (partner,), won)

        for opponent in others:
            if opponent is not None:
                _tally(opponents, opponent.id, (opponent,), won)

        if None not in others:
            pair = tuple(sorted(others, key=lambda p: p.id))
            _tally(opponent_teams, get_team_key(pair[0].id, pair[1].id), pair, won)

    return {
        'commonPartners': _top(partners, limit),
        'topOpponents': _top(opponents, limit),
        'topOpponentTeams': _top(opponent_teams, limit),
    }


def compute_team_streaks(all_matches: Iterable[MatchRecord], limit: int = TOP_N) -> List[TeamStreak]:
    """
    Current win streaks for every pairing, scanning matches newest first.

    A pairing's streak counts its wins back from the present and freezes at
    the first loss found; older wins never extend it again. Only pairings
    still unbeaten in the scanned history are reported.
    """
    streaks = {}

    for match in all_matches:
        for team in (1, 2):
            players = match.team_players(team)
            if None in players:
                continue
            key = get_team_key(players[0].id, players[1].id)
            record = streaks.get(key)
            if record is None:
                ordered = tuple(sorted(players, key=lambda p: p.id))
                record = streaks[key] = TeamStreak(key=key, players=ordered)
            if not record.active:
                continue
            if match.winning_team == team:
                if record.streak == 0:
                    record.last_win_date = match.date
                record.streak += 1
            else:
                record.active = False

    current = [record for record in streaks.values() if record.active and record.streak > 0]
    current.sort(key=lambda r: (r.streak, r.last_win_date), reverse=True)
    return current[:limit]


def _on_opposite_teams(match, player_a, player_b):
    team_a = match.team_for(player_a)
    team_b = match.team_for(player_b)
    return team_a is not None and team_b is not None and team_a != team_b


def find_head_to_head(player_a: str, player_b: str, matches: Iterable[MatchRecord], limit: int = HEAD_TO_HEAD_LIMIT) -> List[MatchRecord]:
    """Most recent matches where the two players were on opposing teams"""
    found = []
    for match in matches:
        if _on_opposite_teams(match, player_a, player_b):
            found.append(match)
            if len(found) >= limit:
                break
    return found


def compute_head_to_head_record(player_a, player_b, matches):
    """Win counts for each side across every match the two played against each other"""
    record = {'matches': 0, 'wins': {player_a: 0, player_b: 0}}
    for match in matches:
        if not _on_opposite_teams(match, player_a, player_b):
            continue
        record['matches'] += 1
        winner = player_a if match.winning_team == match.team_for(player_a) else player_b
        record['wins'][winner] += 1
    return record


def compute_leaderboard(players, matches):
    """
    Snapshot for every non-archived player, best win rate first.

    `players` are objects or mappings with id, name and an archived flag.
    """
    matches = list(matches)
    board = []
    for player in players:
        if isinstance(player, Mapping):
            archived = player.get('isArchived', False)
            ref = PlayerRef.from_value(player)
        else:
            archived = getattr(player, 'is_archived', False)
            ref = PlayerRef(id=player.id, name=player.name,
                            profile_picture=getattr(player, 'profile_picture', None))
        if archived or ref is None:
            continue
        stats = compute_player_stats(ref.id, matches)
        board.append({'player': ref, 'stats': stats})

    board.sort(key=lambda row: (-row['stats'].win_rate, -row['stats'].wins, row['player'].name or ''))
    return board
