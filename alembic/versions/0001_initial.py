"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _tournament_fk() -> sa.Column:
    return sa.Column(
        "tournament_id", sa.String(length=36), sa.ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )


def upgrade() -> None:
    # Пользователи.
    op.create_table(
        "users",
        _id(),
        sa.Column("username", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Турниры и их настройки формата.
    op.create_table(
        "tournaments",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("abbrv", sa.String(length=50), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("teams_per_side", sa.Integer(), nullable=False),
        sa.Column("substantive_speakers", sa.Integer(), nullable=False),
        sa.Column("reply_speakers", sa.Boolean(), nullable=False),
        sa.Column("reply_must_speak", sa.Boolean(), nullable=False),
        sa.Column("max_substantive_speech_index_for_reply", sa.Integer(), nullable=True),
        sa.Column("pool_ballot_setup", sa.String(length=20), nullable=False),
        sa.Column("elim_ballot_setup", sa.String(length=20), nullable=False),
        sa.Column("elim_ballots_require_speaks", sa.Boolean(), nullable=False),
        sa.Column("substantive_speech_min_speak", sa.Float(), nullable=False),
        sa.Column("substantive_speech_max_speak", sa.Float(), nullable=False),
        sa.Column("substantive_speech_step", sa.Float(), nullable=False),
        sa.Column("reply_speech_min_speak", sa.Float(), nullable=True),
        sa.Column("reply_speech_max_speak", sa.Float(), nullable=True),
        sa.Column("institution_penalty", sa.Integer(), nullable=False),
        sa.Column("history_penalty", sa.Integer(), nullable=False),
        sa.Column("repeat_pullup_penalty", sa.Integer(), nullable=False),
        sa.Column("pullup_metrics", sa.Text(), nullable=False),
        sa.Column("team_standings_metrics", sa.Text(), nullable=False),
        sa.Column("speaker_standings_metrics", sa.Text(), nullable=False),
        sa.Column("exclude_from_speaker_standings_after", sa.Integer(), nullable=False),
    )
    op.create_index("ix_tournaments_slug", "tournaments", ["slug"], unique=True)

    op.create_table(
        "tournament_members",
        _id(),
        _tournament_fk(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_superuser", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("tournament_id", "user_id", name="uq_member_user"),
    )
    op.create_index("ix_tournament_members_tournament_id", "tournament_members", ["tournament_id"])
    op.create_index("ix_tournament_members_user_id", "tournament_members", ["user_id"])

    # Справочники турнира.
    op.create_table(
        "institutions",
        _id(),
        _tournament_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
    )
    op.create_index("ix_institutions_tournament_id", "institutions", ["tournament_id"])

    op.create_table(
        "break_categories",
        _id(),
        _tournament_fk(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tournament_id", "name", name="uq_break_category_name"),
    )
    op.create_index("ix_break_categories_tournament_id", "break_categories", ["tournament_id"])

    op.create_table(
        "rooms",
        _id(),
        _tournament_fk(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
    )
    op.create_index("ix_rooms_tournament_id", "rooms", ["tournament_id"])

    # Участники.
    op.create_table(
        "teams",
        _id(),
        _tournament_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "institution_id", sa.String(length=36), sa.ForeignKey("institutions.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tournament_id", "number", name="uq_team_number"),
    )
    op.create_index("ix_teams_tournament_id", "teams", ["tournament_id"])

    op.create_table(
        "speakers",
        _id(),
        _tournament_fk(),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("private_url", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("tournament_id", "private_url", name="uq_speaker_private_url"),
    )
    op.create_index("ix_speakers_tournament_id", "speakers", ["tournament_id"])
    op.create_index("ix_speakers_team_id", "speakers", ["team_id"])

    op.create_table(
        "judges",
        _id(),
        _tournament_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "institution_id", sa.String(length=36), sa.ForeignKey("institutions.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("private_url", sa.String(length=64), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tournament_id", "private_url", name="uq_judge_private_url"),
        sa.UniqueConstraint("tournament_id", "number", name="uq_judge_number"),
    )
    op.create_index("ix_judges_tournament_id", "judges", ["tournament_id"])

    # Раунды.
    op.create_table(
        "rounds",
        _id(),
        _tournament_fk(),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("kind", sa.String(length=10), nullable=False),
        sa.Column(
            "break_category_id",
            sa.String(length=36),
            sa.ForeignKey("break_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column("draw_status", sa.String(length=20), nullable=False),
        sa.Column("draw_released_at", sa.DateTime(), nullable=True),
        sa.Column("motions_released_at", sa.DateTime(), nullable=True),
        sa.Column("results_published_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("tournament_id", "name", name="uq_round_name"),
    )
    op.create_index("ix_rounds_tournament_id", "rounds", ["tournament_id"])

    op.create_table(
        "motions",
        _id(),
        _tournament_fk(),
        sa.Column("round_id", sa.String(length=36), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("motion", sa.Text(), nullable=False),
        sa.Column("infoslide", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_motions_tournament_id", "motions", ["tournament_id"])
    op.create_index("ix_motions_round_id", "motions", ["round_id"])

    for table, column, target, constraint in (
        ("team_availability", "team_id", "teams.id", "uq_team_availability"),
        ("judge_availability", "judge_id", "judges.id", "uq_judge_availability"),
    ):
        op.create_table(
            table,
            _id(),
            _tournament_fk(),
            sa.Column("round_id", sa.String(length=36), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False),
            sa.Column(column, sa.String(length=36), sa.ForeignKey(target, ondelete="CASCADE"), nullable=False),
            sa.Column("available", sa.Boolean(), nullable=False),
            sa.UniqueConstraint("round_id", column, name=constraint),
        )
        op.create_index(f"ix_{table}_tournament_id", table, ["tournament_id"])
        op.create_index(f"ix_{table}_round_id", table, ["round_id"])
        op.create_index(f"ix_{table}_{column}", table, [column])

    op.create_table(
        "round_tickets",
        _id(),
        sa.Column("round_id", sa.String(length=36), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("acquired", sa.DateTime(), nullable=False),
        sa.Column("released", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.UniqueConstraint("round_id", "kind", "seq", name="uq_round_ticket_seq"),
    )
    op.create_index("ix_round_tickets_round_id", "round_tickets", ["round_id"])

    # Жеребьёвки и дебаты.
    op.create_table(
        "draws",
        _id(),
        _tournament_fk(),
        sa.Column("round_id", sa.String(length=36), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("released_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("round_id", "version", name="uq_draw_version"),
    )
    op.create_index("ix_draws_tournament_id", "draws", ["tournament_id"])
    op.create_index("ix_draws_round_id", "draws", ["round_id"])

    op.create_table(
        "debates",
        _id(),
        _tournament_fk(),
        sa.Column("draw_id", sa.String(length=36), sa.ForeignKey("draws.id", ondelete="CASCADE"), nullable=False),
        sa.Column("round_id", sa.String(length=36), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("room_id", sa.String(length=36), sa.ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("bracket", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.UniqueConstraint("round_id", "number", name="uq_debate_number"),
    )
    op.create_index("ix_debates_tournament_id", "debates", ["tournament_id"])
    op.create_index("ix_debates_draw_id", "debates", ["draw_id"])
    op.create_index("ix_debates_round_id", "debates", ["round_id"])

    op.create_table(
        "debate_teams",
        _id(),
        _tournament_fk(),
        sa.Column("debate_id", sa.String(length=36), sa.ForeignKey("debates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("side", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("pullup", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("debate_id", "side", "seq", name="uq_debate_team_position"),
    )
    op.create_index("ix_debate_teams_tournament_id", "debate_teams", ["tournament_id"])
    op.create_index("ix_debate_teams_debate_id", "debate_teams", ["debate_id"])
    op.create_index("ix_debate_teams_team_id", "debate_teams", ["team_id"])

    op.create_table(
        "debate_judges",
        _id(),
        _tournament_fk(),
        sa.Column("debate_id", sa.String(length=36), sa.ForeignKey("debates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("judge_id", sa.String(length=36), sa.ForeignKey("judges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.UniqueConstraint("debate_id", "judge_id", name="uq_debate_judge"),
    )
    op.create_index("ix_debate_judges_tournament_id", "debate_judges", ["tournament_id"])
    op.create_index("ix_debate_judges_debate_id", "debate_judges", ["debate_id"])
    op.create_index("ix_debate_judges_judge_id", "debate_judges", ["judge_id"])

    op.create_table(
        "debate_team_results",
        _id(),
        _tournament_fk(),
        sa.Column("debate_id", sa.String(length=36), sa.ForeignKey("debates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.UniqueConstraint("debate_id", "team_id", name="uq_debate_team_result"),
    )
    op.create_index("ix_debate_team_results_tournament_id", "debate_team_results", ["tournament_id"])
    op.create_index("ix_debate_team_results_debate_id", "debate_team_results", ["debate_id"])
    op.create_index("ix_debate_team_results_team_id", "debate_team_results", ["team_id"])

    op.create_table(
        "debate_speaker_results",
        _id(),
        _tournament_fk(),
        sa.Column("debate_id", sa.String(length=36), sa.ForeignKey("debates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("speaker_id", sa.String(length=36), sa.ForeignKey("speakers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.UniqueConstraint("debate_id", "team_id", "position", name="uq_debate_speaker_position"),
    )
    op.create_index("ix_debate_speaker_results_tournament_id", "debate_speaker_results", ["tournament_id"])
    op.create_index("ix_debate_speaker_results_debate_id", "debate_speaker_results", ["debate_id"])
    op.create_index("ix_debate_speaker_results_speaker_id", "debate_speaker_results", ["speaker_id"])
    op.create_index("ix_debate_speaker_results_team_id", "debate_speaker_results", ["team_id"])

    # Бюллетени.
    op.create_table(
        "ballots",
        _id(),
        _tournament_fk(),
        sa.Column("debate_id", sa.String(length=36), sa.ForeignKey("debates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("judge_id", sa.String(length=36), sa.ForeignKey("judges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("motion_id", sa.String(length=36), sa.ForeignKey("motions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("editor_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.UniqueConstraint("debate_id", "judge_id", "version", name="uq_ballot_version"),
    )
    op.create_index("ix_ballots_tournament_id", "ballots", ["tournament_id"])
    op.create_index("ix_ballots_debate_id", "ballots", ["debate_id"])
    op.create_index("ix_ballots_judge_id", "ballots", ["judge_id"])

    op.create_table(
        "ballot_team_ranks",
        _id(),
        _tournament_fk(),
        sa.Column("ballot_id", sa.String(length=36), sa.ForeignKey("ballots.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.UniqueConstraint("ballot_id", "team_id", name="uq_ballot_team_rank"),
    )
    op.create_index("ix_ballot_team_ranks_tournament_id", "ballot_team_ranks", ["tournament_id"])
    op.create_index("ix_ballot_team_ranks_ballot_id", "ballot_team_ranks", ["ballot_id"])

    op.create_table(
        "ballot_scores",
        _id(),
        _tournament_fk(),
        sa.Column("ballot_id", sa.String(length=36), sa.ForeignKey("ballots.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("speaker_id", sa.String(length=36), sa.ForeignKey("speakers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("speaker_position", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.UniqueConstraint("ballot_id", "team_id", "speaker_position", name="uq_ballot_score_position"),
    )
    op.create_index("ix_ballot_scores_tournament_id", "ballot_scores", ["tournament_id"])
    op.create_index("ix_ballot_scores_ballot_id", "ballot_scores", ["ballot_id"])

    # Снимки состояния.
    op.create_table(
        "snapshots",
        _id(),
        _tournament_fk(),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("prev", sa.String(length=36), sa.ForeignKey("snapshots.id", ondelete="SET NULL"), nullable=True),
        sa.Column("schema_id", sa.String(length=64), nullable=False),
        sa.Column("contents", sa.Text(), nullable=False),
    )
    op.create_index("ix_snapshots_tournament_id", "snapshots", ["tournament_id"])


def downgrade() -> None:
    for table in (
        "snapshots",
        "ballot_scores",
        "ballot_team_ranks",
        "ballots",
        "debate_speaker_results",
        "debate_team_results",
        "debate_judges",
        "debate_teams",
        "debates",
        "draws",
        "round_tickets",
        "judge_availability",
        "team_availability",
        "motions",
        "rounds",
        "judges",
        "speakers",
        "teams",
        "rooms",
        "break_categories",
        "institutions",
        "tournament_members",
        "tournaments",
        "users",
    ):
        op.drop_table(table)
