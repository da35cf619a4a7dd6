"""Регистрирует ORM-модели в метаданных SQLAlchemy."""

from tabroom.models.ballot import Ballot, BallotScore, BallotTeamRank
from tabroom.models.base import Base
from tabroom.models.draw import Debate, DebateJudge, DebateSpeakerResult, DebateTeam, DebateTeamResult, Draw
from tabroom.models.participants import Judge, Speaker, Team
from tabroom.models.round import JudgeAvailability, Motion, Round, RoundTicket, TeamAvailability
from tabroom.models.snapshot import Snapshot
from tabroom.models.tournament import BreakCategory, Institution, Room, Tournament
from tabroom.models.user import TournamentMember, User

__all__ = [
    "Base",
    "User",
    "TournamentMember",
    "Tournament",
    "Institution",
    "BreakCategory",
    "Room",
    "Team",
    "Speaker",
    "Judge",
    "Round",
    "Motion",
    "TeamAvailability",
    "JudgeAvailability",
    "RoundTicket",
    "Draw",
    "Debate",
    "DebateTeam",
    "DebateJudge",
    "DebateTeamResult",
    "DebateSpeakerResult",
    "Ballot",
    "BallotTeamRank",
    "BallotScore",
    "Snapshot",
]
