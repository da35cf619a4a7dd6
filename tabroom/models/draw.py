from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tabroom.models.base import Base, new_id


class DebateStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    CONFLICT = "conflict"


class JudgeRole(str, Enum):
    CHAIR = "chair"
    PANELIST = "panelist"
    TRAINEE = "trainee"


class Draw(Base):
    __tablename__ = "draws"
    __table_args__ = (UniqueConstraint("round_id", "version", name="uq_draw_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    released_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0)


class Debate(Base):
    __tablename__ = "debates"
    __table_args__ = (UniqueConstraint("round_id", "number", name="uq_debate_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    draw_id: Mapped[str] = mapped_column(ForeignKey("draws.id", ondelete="CASCADE"), index=True)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"), index=True)
    room_id: Mapped[str | None] = mapped_column(ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True)
    number: Mapped[int] = mapped_column(Integer)
    bracket: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=DebateStatus.DRAFT.value)


class DebateTeam(Base):
    __tablename__ = "debate_teams"
    __table_args__ = (UniqueConstraint("debate_id", "side", "seq", name="uq_debate_team_position"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    debate_id: Mapped[str] = mapped_column(ForeignKey("debates.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    side: Mapped[int] = mapped_column(Integer)
    seq: Mapped[int] = mapped_column(Integer)
    pullup: Mapped[bool] = mapped_column(Boolean, default=False)


class DebateJudge(Base):
    __tablename__ = "debate_judges"
    __table_args__ = (UniqueConstraint("debate_id", "judge_id", name="uq_debate_judge"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    debate_id: Mapped[str] = mapped_column(ForeignKey("debates.id", ondelete="CASCADE"), index=True)
    judge_id: Mapped[str] = mapped_column(ForeignKey("judges.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(20), default=JudgeRole.PANELIST.value)


class DebateTeamResult(Base):
    __tablename__ = "debate_team_results"
    __table_args__ = (UniqueConstraint("debate_id", "team_id", name="uq_debate_team_result"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    debate_id: Mapped[str] = mapped_column(ForeignKey("debates.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    points: Mapped[int] = mapped_column(Integer)


class DebateSpeakerResult(Base):
    __tablename__ = "debate_speaker_results"
    __table_args__ = (UniqueConstraint("debate_id", "team_id", "position", name="uq_debate_speaker_position"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    debate_id: Mapped[str] = mapped_column(ForeignKey("debates.id", ondelete="CASCADE"), index=True)
    speaker_id: Mapped[str] = mapped_column(ForeignKey("speakers.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    score: Mapped[float] = mapped_column(Float)
