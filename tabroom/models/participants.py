from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tabroom.models.base import Base, new_id


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("tournament_id", "number", name="uq_team_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    institution_id: Mapped[str | None] = mapped_column(ForeignKey("institutions.id", ondelete="SET NULL"), nullable=True)
    number: Mapped[int] = mapped_column(Integer)


class Speaker(Base):
    __tablename__ = "speakers"
    __table_args__ = (UniqueConstraint("tournament_id", "private_url", name="uq_speaker_private_url"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    private_url: Mapped[str] = mapped_column(String(64))


class Judge(Base):
    __tablename__ = "judges"
    __table_args__ = (
        UniqueConstraint("tournament_id", "private_url", name="uq_judge_private_url"),
        UniqueConstraint("tournament_id", "number", name="uq_judge_number"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    institution_id: Mapped[str | None] = mapped_column(ForeignKey("institutions.id", ondelete="SET NULL"), nullable=True)
    private_url: Mapped[str] = mapped_column(String(64))
    number: Mapped[int] = mapped_column(Integer)
