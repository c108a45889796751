import uuid
from datetime import datetime
from urllib.parse import quote

from flask_sqlalchemy import SQLAlchemy

from stats_calculator import MatchRecord, PlayerRef

db = SQLAlchemy()


def new_id():
    return str(uuid.uuid4())


def default_avatar(name):
    """Generated avatar URL used when a player has no profile picture"""
    return f"https://ui-avatars.com/api/?name={quote(name)}&background=random&size=200"


class Player(db.Model):
    __tablename__ = 'players'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), unique=True, nullable=False)
    profile_picture = db.Column(db.String(500), nullable=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Write-time cache, see PlayerStats
    stats = db.relationship('PlayerStats', backref='player', uselist=False,
                            cascade='all, delete-orphan', lazy=True)

    def __repr__(self):
        return f'<Player {self.name}>'

    def to_ref(self):
        return PlayerRef(id=self.id, name=self.name, profile_picture=self.profile_picture)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'profilePicture': self.profile_picture,
            'isArchived': self.is_archived,
        }


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    team1_player_a_id = db.Column(db.String(36), db.ForeignKey('players.id'), nullable=False, index=True)
    team1_player_b_id = db.Column(db.String(36), db.ForeignKey('players.id'), nullable=False, index=True)
    team2_player_a_id = db.Column(db.String(36), db.ForeignKey('players.id'), nullable=False, index=True)
    team2_player_b_id = db.Column(db.String(36), db.ForeignKey('players.id'), nullable=False, index=True)

    # Each player on a team carries the team's score
    team1_score_a = db.Column(db.Integer, nullable=False, default=0)
    team1_score_b = db.Column(db.Integer, nullable=False, default=0)
    team2_score_a = db.Column(db.Integer, nullable=False, default=0)
    team2_score_b = db.Column(db.Integer, nullable=False, default=0)
    winning_team = db.Column(db.Integer, nullable=False)  # 1 or 2

    team1_player_a = db.relationship('Player', foreign_keys=[team1_player_a_id])
    team1_player_b = db.relationship('Player', foreign_keys=[team1_player_b_id])
    team2_player_a = db.relationship('Player', foreign_keys=[team2_player_a_id])
    team2_player_b = db.relationship('Player', foreign_keys=[team2_player_b_id])

    def __repr__(self):
        return f'<Match {self.id} {self.team1_score_a}-{self.team2_score_a}>'

    @property
    def player_ids(self):
        return [self.team1_player_a_id, self.team1_player_b_id,
                self.team2_player_a_id, self.team2_player_b_id]

    def to_record(self):
        """Convert to the record type used by stats_calculator"""
        def ref(player, player_id):
            if player is not None:
                return player.to_ref()
            return PlayerRef(id=player_id) if player_id else None

        return MatchRecord(
            id=self.id,
            date=self.date,
            team1_player_a=ref(self.team1_player_a, self.team1_player_a_id),
            team1_player_b=ref(self.team1_player_b, self.team1_player_b_id),
            team2_player_a=ref(self.team2_player_a, self.team2_player_a_id),
            team2_player_b=ref(self.team2_player_b, self.team2_player_b_id),
            team1_score_a=self.team1_score_a,
            team1_score_b=self.team1_score_b,
            team2_score_a=self.team2_score_a,
            team2_score_b=self.team2_score_b,
            winning_team=self.winning_team,
        )

    def to_dict(self):
        """Convert match to dictionary for JSON serialization"""
        return self.to_record().to_dict()


class PlayerStats(db.Model):
    """
    Running totals updated whenever a match is recorded. Recomputed from the
    matches table on deletes and by rebuild_player_stats.py; when the two
    disagree the computed numbers win.
    """
    __tablename__ = 'player_stats'

    player_id = db.Column(db.String(36), db.ForeignKey('players.id'), primary_key=True)
    total_matches = db.Column(db.Integer, nullable=False, default=0)
    wins = db.Column(db.Integer, nullable=False, default=0)
    losses = db.Column(db.Integer, nullable=False, default=0)
    win_rate = db.Column(db.Float, nullable=False, default=0.0)
    points_scored = db.Column(db.Integer, nullable=False, default=0)
    points_conceded = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<PlayerStats {self.player_id} {self.wins}-{self.losses}>'

    def to_dict(self):
        return {
            'totalMatches': self.total_matches,
            'wins': self.wins,
            'losses': self.losses,
            'winRate': self.win_rate,
            'pointsScored': self.points_scored,
            'pointsConceded': self.points_conceded,
        }
