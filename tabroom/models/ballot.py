from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tabroom.models.base import Base, new_id


class Ballot(Base):
    __tablename__ = "ballots"
    __table_args__ = (UniqueConstraint("debate_id", "judge_id", "version", name="uq_ballot_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    debate_id: Mapped[str] = mapped_column(ForeignKey("debates.id", ondelete="CASCADE"), index=True)
    judge_id: Mapped[str] = mapped_column(ForeignKey("judges.id", ondelete="CASCADE"), index=True)
    motion_id: Mapped[str] = mapped_column(ForeignKey("motions.id", ondelete="CASCADE"))
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, default=0)
    editor_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class BallotTeamRank(Base):
    __tablename__ = "ballot_team_ranks"
    __table_args__ = (UniqueConstraint("ballot_id", "team_id", name="uq_ballot_team_rank"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    ballot_id: Mapped[str] = mapped_column(ForeignKey("ballots.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"))
    points: Mapped[int] = mapped_column(Integer)


class BallotScore(Base):
    __tablename__ = "ballot_scores"
    __table_args__ = (UniqueConstraint("ballot_id", "team_id", "speaker_position", name="uq_ballot_score_position"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    ballot_id: Mapped[str] = mapped_column(ForeignKey("ballots.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"))
    speaker_id: Mapped[str] = mapped_column(ForeignKey("speakers.id", ondelete="CASCADE"))
    speaker_position: Mapped[int] = mapped_column(Integer)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
