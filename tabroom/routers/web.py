import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.core.config import settings
from tabroom.core.errors import BadRequest
from tabroom.core.session import SESSION_COOKIE, create_session_token
from tabroom.core.state import AppState, get_app_state
from tabroom.db.session import get_db
from tabroom.models.round import DrawStatus, Round
from tabroom.models.tournament import Tournament
from tabroom.models.user import User
from tabroom.schemas import BallotSubmission, PanelUpdate, TournamentConfig, TournamentCreate
from tabroom.services.ballots import submit_ballot
from tabroom.services.broadcast import Msg, MsgKind
from tabroom.services.draws import (
    DRAW_METHODS,
    acquire_ticket,
    confirm_draw,
    describe_draw,
    run_draw_job,
    set_debate_panel,
    set_debate_room,
    set_draw_released,
)
from tabroom.services.metrics import parse_speaker_metrics
from tabroom.services.permissions import Action, Authorization, authorize
from tabroom.services.queries import get_membership, get_round, get_tournament, tournament_teams
from tabroom.services.rounds import (
    add_motion,
    create_round,
    set_judge_availability,
    set_motions_published,
    set_results_published,
    set_round_completed,
    set_team_availability,
)
from tabroom.services.snapshots import snapshot_chain
from tabroom.services.standings import (
    StandingsConfig,
    compute_speaker_standings,
    compute_team_standings,
    load_standings_input,
)
from tabroom.services.tournament import (
    add_member,
    create_break_category,
    create_institution,
    create_judge,
    create_room,
    create_speaker,
    create_team,
    create_tournament,
    create_user,
    update_config,
)

router = APIRouter()
logger = logging.getLogger(__name__)


async def current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User | None:
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        return None
    return await db.get(User, user_id)


async def load_tournament(
    db: AsyncSession, tournament_id: str, user: User | None, action: Action
) -> tuple[Tournament, Authorization]:
    """Загружает турнир и проверяет право пользователя на действие."""
    tournament = await get_tournament(db, tournament_id)
    membership = await get_membership(db, tournament.id, user.id if user else None)
    return tournament, authorize(user, membership, action)


def _round_json(round_: Round) -> dict:
    return {
        "id": round_.id,
        "seq": round_.seq,
        "name": round_.name,
        "kind": round_.kind,
        "break_category_id": round_.break_category_id,
        "completed": round_.completed,
        "draw_status": round_.draw_status,
        "draw_released_at": round_.draw_released_at.isoformat() if round_.draw_released_at else None,
        "results_published_at": round_.results_published_at.isoformat() if round_.results_published_at else None,
    }


@router.post("/users")
async def register_user(
    username: str = Form(...),
    email: str = Form(default=""),
    db: AsyncSession = Depends(get_db),
):
    """Регистрирует пользователя и сразу выдаёт cookie сессии."""
    user = await create_user(db, username, email)
    response = JSONResponse({"ok": True, "user_id": user.id})
    response.set_cookie(
        SESSION_COOKIE,
        create_session_token(user.id),
        httponly=True,
        samesite="lax",
        max_age=settings.session_max_age,
    )
    return response


@router.post("/tournaments")
async def new_tournament(
    data: TournamentCreate,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    authorize(user, None, Action.PARTICIPATE)
    tournament = await create_tournament(db, user, data)
    return {"ok": True, "tournament_id": tournament.id, "slug": tournament.slug}


@router.get("/tournaments/{tournament_id}")
async def tournament_detail(
    tournament_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.VIEW)
    return {
        "ok": True,
        "id": tournament.id,
        "name": tournament.name,
        "abbrv": tournament.abbrv,
        "slug": tournament.slug,
        "teams_per_side": tournament.teams_per_side,
        "substantive_speakers": tournament.substantive_speakers,
        "reply_speakers": tournament.reply_speakers,
        "pool_ballot_setup": tournament.pool_ballot_setup,
        "elim_ballot_setup": tournament.elim_ballot_setup,
        "team_standings_metrics": json.loads(tournament.team_standings_metrics),
        "pullup_metrics": json.loads(tournament.pullup_metrics),
        "speaker_standings_metrics": json.loads(tournament.speaker_standings_metrics),
    }


@router.put("/tournaments/{tournament_id}/config")
async def tournament_config(
    tournament_id: str,
    config: TournamentConfig,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    await update_config(db, tournament, config)
    return {"ok": True}


@router.post("/tournaments/{tournament_id}/members")
async def tournament_member(
    tournament_id: str,
    username: str = Form(...),
    is_superuser: bool = Form(default=False),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    member = await add_member(db, tournament, username, is_superuser)
    return {"ok": True, "member_id": member.id}


@router.post("/tournaments/{tournament_id}/institutions")
async def tournament_institution(
    tournament_id: str,
    name: str = Form(...),
    code: str = Form(default=""),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    institution = await create_institution(db, tournament, name, code)
    return {"ok": True, "institution_id": institution.id}


@router.post("/tournaments/{tournament_id}/break-categories")
async def tournament_break_category(
    tournament_id: str,
    name: str = Form(...),
    priority: int = Form(default=0),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    category = await create_break_category(db, tournament, name, priority)
    return {"ok": True, "break_category_id": category.id}


@router.post("/tournaments/{tournament_id}/rooms")
async def tournament_room(
    tournament_id: str,
    name: str = Form(...),
    priority: int = Form(default=0),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    room = await create_room(db, tournament, name, priority)
    return {"ok": True, "room_id": room.id}


@router.post("/tournaments/{tournament_id}/teams")
async def tournament_team(
    tournament_id: str,
    name: str = Form(...),
    speakers: list[str] = Form(default=[]),
    institution_id: str | None = Form(default=None),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    team = await create_team(db, tournament, name, speakers, institution_id or None)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.PARTICIPANTS_UPDATE))
    return {"ok": True, "team_id": team.id, "number": team.number}


@router.get("/tournaments/{tournament_id}/teams")
async def tournament_team_list(
    tournament_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.VIEW)
    teams = await tournament_teams(db, tournament.id)
    return {"ok": True, "teams": [{"id": team.id, "name": team.name, "number": team.number} for team in teams]}


@router.post("/tournaments/{tournament_id}/teams/{team_id}/speakers")
async def tournament_speaker(
    tournament_id: str,
    team_id: str,
    name: str = Form(...),
    email: str | None = Form(default=None),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    speaker = await create_speaker(db, tournament, team_id, name, email or None)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.PARTICIPANTS_UPDATE))
    return {"ok": True, "speaker_id": speaker.id, "private_url": speaker.private_url}


@router.post("/tournaments/{tournament_id}/judges")
async def tournament_judge(
    tournament_id: str,
    name: str = Form(...),
    institution_id: str | None = Form(default=None),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    judge = await create_judge(db, tournament, name, institution_id or None)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.PARTICIPANTS_UPDATE))
    return {"ok": True, "judge_id": judge.id, "private_url": judge.private_url, "number": judge.number}


@router.post("/tournaments/{tournament_id}/rounds")
async def tournament_round(
    tournament_id: str,
    name: str = Form(...),
    seq: int = Form(...),
    kind: str = Form(default="prelim"),
    break_category_id: str | None = Form(default=None),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await create_round(db, tournament, name, seq, kind, break_category_id or None)
    return {"ok": True, "round": _round_json(round_)}


@router.get("/tournaments/{tournament_id}/rounds/{round_id}")
async def round_detail(
    tournament_id: str,
    round_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.VIEW)
    round_ = await get_round(db, tournament.id, round_id)
    return {"ok": True, "round": _round_json(round_)}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/motions")
async def round_motion(
    tournament_id: str,
    round_id: str,
    motion: str = Form(...),
    infoslide: str | None = Form(default=None),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    row = await add_motion(db, round_, motion, infoslide or None)
    return {"ok": True, "motion_id": row.id}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/motions/publish")
async def round_motions_publish(
    tournament_id: str,
    round_id: str,
    publish: bool = Form(default=True),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_motions_published(db, round_, publish)
    return {"ok": True}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/availability/teams")
async def round_team_availability(
    tournament_id: str,
    round_id: str,
    team_ids: list[str] = Form(...),
    available: bool = Form(default=True),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_team_availability(db, round_, team_ids, available)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.TEAM_AVAILABILITY_UPDATE, round_id))
    return {"ok": True}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/availability/judges")
async def round_judge_availability(
    tournament_id: str,
    round_id: str,
    judge_ids: list[str] = Form(...),
    available: bool = Form(default=True),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_judge_availability(db, round_, judge_ids, available)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.JUDGE_AVAILABILITY_UPDATE, round_id))
    return {"ok": True}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/draws/create")
async def round_draw_create(
    tournament_id: str,
    round_id: str,
    force: bool = Query(default=False),
    method: str = Query(default="power"),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    """Берёт тикет и запускает жеребьёвку; при долгом решении отвечает 202."""
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    if method not in DRAW_METHODS:
        raise BadRequest(f"Unknown draw method {method!r}")
    ticket = await acquire_ticket(db, round_, force)

    job = state.track(
        asyncio.create_task(
            run_draw_job(
                state.session_factory,
                state.executor,
                tournament.id,
                round_.id,
                ticket.id,
                force=force,
                method=method,
            )
        )
    )

    def announce(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning("Draw job for round %s failed: %s", round_id, task.exception())
            return
        state.broadcaster.publish(Msg(tournament_id, MsgKind.DRAW_UPDATED, round_id))

    job.add_done_callback(announce)
    try:
        draw_id = await asyncio.wait_for(asyncio.shield(job), timeout=settings.draw_response_deadline)
    except asyncio.TimeoutError:
        return JSONResponse({"ok": True, "status": "running", "ticket_seq": ticket.seq}, status_code=202)
    return {"ok": True, "status": "done", "draw_id": draw_id}


@router.get("/tournaments/{tournament_id}/rounds/{round_id}/draw")
async def round_draw(
    tournament_id: str,
    round_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament = await get_tournament(db, tournament_id)
    round_ = await get_round(db, tournament.id, round_id)
    released = round_.draw_status in (DrawStatus.RELEASED_TEAMS.value, DrawStatus.RELEASED_FULL.value)
    await load_tournament(db, tournament_id, user, Action.VIEW if released else Action.MANAGE)
    draw = await describe_draw(db, round_)
    if round_.draw_status == DrawStatus.RELEASED_TEAMS.value:
        for debate in draw["debates"]:
            debate["judges"] = []
    return {"ok": True, **draw}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/draws/confirm")
async def round_draw_confirm(
    tournament_id: str,
    round_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await confirm_draw(db, round_)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.DRAW_UPDATED, round_id))
    return {"ok": True, "round": _round_json(round_)}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/draws/setreleased")
async def round_draw_release(
    tournament_id: str,
    round_id: str,
    status: str = Form(...),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_draw_released(db, round_, status)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.DRAW_UPDATED, round_id))
    return {"ok": True, "round": _round_json(round_)}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/debates/{debate_id}/judges")
async def debate_panel(
    tournament_id: str,
    round_id: str,
    debate_id: str,
    panel: PanelUpdate,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    rows = await set_debate_panel(db, round_, debate_id, panel.judges)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.DRAW_UPDATED, round_id))
    return {"ok": True, "judges": [{"judge_id": row.judge_id, "role": row.role} for row in rows]}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/debates/{debate_id}/room")
async def debate_room(
    tournament_id: str,
    round_id: str,
    debate_id: str,
    room_id: str = Form(default=""),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    debate = await set_debate_room(db, round_, debate_id, room_id or None)
    state.broadcaster.publish(Msg(tournament.id, MsgKind.DRAW_UPDATED, round_id))
    return {"ok": True, "debate_id": debate.id, "room_id": debate.room_id}


@router.post("/tournaments/{tournament_id}/privateurls/{private_url}/rounds/{round_id}/submit")
async def ballot_submit(
    tournament_id: str,
    private_url: str,
    round_id: str,
    submission: BallotSubmission,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    """Приём бюллетеня судьи по приватной ссылке, без входа в систему."""
    tournament = await get_tournament(db, tournament_id)
    round_ = await get_round(db, tournament.id, round_id)
    outcome = await submit_ballot(db, tournament, round_, private_url, submission, user.id if user else None)
    return {
        "ok": True,
        "ballot_id": outcome.ballot.id,
        "version": outcome.ballot.version,
        "debate_status": outcome.debate_status,
        "problems": outcome.problems,
    }


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/complete")
async def round_complete(
    tournament_id: str,
    round_id: str,
    completed: bool = Form(default=True),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_round_completed(db, tournament, round_, completed)
    return {"ok": True, "round": _round_json(round_)}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/uncomplete")
async def round_uncomplete(
    tournament_id: str,
    round_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_round_completed(db, tournament, round_, False)
    return {"ok": True, "round": _round_json(round_)}


@router.post("/tournaments/{tournament_id}/rounds/{round_id}/results/publish")
async def round_results_publish(
    tournament_id: str,
    round_id: str,
    publish: bool = Form(default=True),
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    round_ = await get_round(db, tournament.id, round_id)
    await set_results_published(db, round_, publish)
    return {"ok": True, "round": _round_json(round_)}


@router.get("/tournaments/{tournament_id}/standings/teams")
async def team_standings(
    tournament_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.VIEW_PRIVATE)
    config = StandingsConfig.from_tournament(tournament)
    data = await load_standings_input(db, tournament)
    loop = asyncio.get_running_loop()
    standings = await loop.run_in_executor(state.executor, compute_team_standings, config, data)
    return {
        "ok": True,
        "metrics": [str(metric) for metric in standings.metrics],
        "bands": [
            [
                {
                    "team_id": team_id,
                    "rank": standings.rank_of(team_id),
                    "values": [str(value) for value in standings.values[team_id]],
                }
                for team_id in band
            ]
            for band in standings.bands
        ],
    }


@router.get("/tournaments/{tournament_id}/standings/speakers")
async def speaker_standings(
    tournament_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.VIEW_PRIVATE)
    config = StandingsConfig.from_tournament(tournament)
    data = await load_standings_input(db, tournament)
    loop = asyncio.get_running_loop()
    rows = await loop.run_in_executor(state.executor, compute_speaker_standings, config, data)
    return {
        "ok": True,
        "metrics": [metric.value for metric in parse_speaker_metrics(tournament.speaker_standings_metrics)],
        "speakers": [
            {
                "speaker_id": row.speaker_id,
                "team_id": row.team_id,
                "rank": row.rank,
                "values": [str(value) for value in row.values],
            }
            for row in rows
        ],
    }


@router.get("/tournaments/{tournament_id}/snapshots")
async def tournament_snapshots(
    tournament_id: str,
    user: User | None = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    tournament, _ = await load_tournament(db, tournament_id, user, Action.MANAGE)
    chain = await snapshot_chain(db, tournament.id)
    return {
        "ok": True,
        "snapshots": [
            {
                "id": snapshot.id,
                "created_at": snapshot.created_at.isoformat(),
                "prev": snapshot.prev,
                "schema_id": snapshot.schema_id,
            }
            for snapshot in chain
        ],
    }
