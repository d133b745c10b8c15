# app/domain/engine.py
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from app.domain.common.errors import (
    GameError,
    InvalidAction,
    InvalidTransition,
    NotPermitted,
    PlayerNotFound,
    RoomNotFound,
    StalePhaseAction,
)
from app.domain.common.fsm import GameModule
from app.domain.games import get_module
from app.domain.helpers import turn_order
from app.store.models import PhaseTimer, PlayerStore, RoomStore
from app.store.registry import RoomRegistry, drop_player, upsert_player
from app.transport.channel import EventChannel
from app.transport.protocols import (
    InChangePhase,
    InCloseRoom,
    InDisconnect,
    InGetRole,
    InJoin,
    InLeave,
    InNextPhase,
    InReaction,
    InSnapshot,
    InStartGame,
    InTimerTick,
    OutGameStarted,
    OutgoingEvent,
    OutJoined,
    OutPhaseChanged,
    OutPlayerJoined,
    OutPlayerLeft,
    OutReaction,
    OutRoleInfo,
    OutRoomClosed,
    OutRoomSnapshot,
    OutTimerTick,
)
from app.util.timeutil import now_ts

logger = logging.getLogger(__name__)

_PUBLIC_PLAYER_FIELDS = {
    "client_id",
    "nickname",
    "connected",
    "alive",
    "team",
    "position",
    "submitted_count",
    "is_vote_finished",
}


@dataclass
class Applied:
    """Outcome of one action: the committed phase plus what was published and replied."""
    phase: str
    epoch: int
    events: List[OutgoingEvent] = field(default_factory=list)
    replies: List[OutgoingEvent] = field(default_factory=list)


class ActionContext:
    """
    Everything a game module handler may touch while the room is locked.
    Handlers mutate `room` and record events; nothing is published until the
    room has been committed.
    """

    def __init__(self, *, room: RoomStore, module: GameModule, client_id: Optional[str], rng: random.Random):
        self.room = room
        self.module = module
        self.client_id = client_id
        self.rng = rng
        self.events: List[OutgoingEvent] = []
        self.replies: List[OutgoingEvent] = []
        self.closing: Optional[str] = None

    # ---- output ----
    def emit(self, event: OutgoingEvent) -> None:
        self.events.append(event)

    def reply(self, event: OutgoingEvent) -> None:
        self.replies.append(event)

    # ---- lookups ----
    @property
    def is_host(self) -> bool:
        return self.client_id is not None and self.client_id == self.room.host_id

    def require_host(self) -> None:
        if not self.is_host:
            raise NotPermitted("Only the host can do that")

    def player(self, client_id: Optional[str] = None) -> PlayerStore:
        cid = client_id or self.client_id
        p = self.room.players.get(cid) if cid else None
        if p is None:
            raise PlayerNotFound(cid)
        return p

    # ---- phase changes ----
    def transition(self, target: str, *, forced: bool = False) -> None:
        """
        Move along a declared edge. Guards apply unless forced (timer expiry).
        """
        current = self.room.phase
        if not self.module.can_transition(current, target):
            raise InvalidTransition(current, target)
        if not forced:
            reason = self.module.check_guard(self.room, target)
            if reason:
                raise InvalidTransition(current, target, reason)
        self.enter(target)

    def try_advance(self, target: str) -> bool:
        if not self.module.can_transition(self.room.phase, target):
            return False
        if self.module.check_guard(self.room, target):
            return False
        self.enter(target)
        return True

    def auto_advance(self) -> bool:
        """Advance when the current phase's completion condition names a target."""
        check = self.module.auto_next.get(self.room.phase)
        if check is None:
            return False
        target = check(self.room)
        if target is None:
            return False
        return self.try_advance(target)

    def enter(self, target: str) -> None:
        room = self.room
        previous = room.phase
        spec = self.module.phases[target]

        room.phase = target
        room.phase_epoch += 1
        room.timer = PhaseTimer(epoch=room.phase_epoch, remaining=spec.timer_sec) if spec.timer_sec else None

        self.emit(
            OutPhaseChanged(
                phase=target,
                previous=previous,
                epoch=room.phase_epoch,
                remaining=room.timer.remaining if room.timer else None,
            )
        )

        hook = self.module.on_enter.get(target)
        if hook is not None:
            hook(self, previous)


def build_snapshot(room: RoomStore) -> OutRoomSnapshot:
    module = get_module(room.game_type)
    turn: Optional[Dict[str, Any]] = None
    if room.turn is not None:
        token = turn_order.current(room.turn)
        turn = {
            "sequence": list(room.turn.sequence),
            "cursor": room.turn.cursor,
            "current": token,
            "members": turn_order.members(room.turn, token) if token else [],
        }
    return OutRoomSnapshot(
        room_code=room.room_code,
        game_type=room.game_type,
        phase=room.phase,
        phase_epoch=room.phase_epoch,
        started=room.started,
        round_no=room.round_no,
        host_id=room.host_id,
        remaining=room.timer.remaining if room.timer else None,
        players=[p.model_dump(include=_PUBLIC_PLAYER_FIELDS) for p in room.player_list()],
        teams={k: list(v) for k, v in room.teams.items()},
        turn=turn,
        state=module.public_state(room) if module.public_state else {},
    )


def build_role_info(room: RoomStore, client_id: str) -> OutRoleInfo:
    module = get_module(room.game_type)
    if client_id == room.host_id and client_id not in room.players:
        role = "HOST"
    else:
        player = room.players.get(client_id)
        if player is None:
            raise PlayerNotFound(client_id)
        role = player.role
    view = module.private_view(room, client_id) if module.private_view else {}
    return OutRoleInfo(client_id=client_id, role=role, view=view)


class GameSessionStateMachine:
    """
    Single authority over Room.phase.

    apply() serializes every action for a room behind that room's lock,
    commits the room, then publishes the recorded events and re-arms the
    room's countdown task.
    """

    def __init__(
        self,
        *,
        registry: RoomRegistry,
        channel: EventChannel,
        tick_interval: float = 1.0,
        rng: Optional[random.Random] = None,
        auto_create: bool = True,
        default_game: str = "MARBLE",
    ) -> None:
        self.registry = registry
        self.channel = channel
        self.tick_interval = tick_interval
        self.rng = rng or random.Random()
        self.auto_create = auto_create
        self.default_game = default_game
        self._timers: Dict[str, Tuple[int, asyncio.Task]] = {}

    # ----------------------------
    # Rooms
    # ----------------------------
    async def create_room(
        self,
        room_code: Optional[str],
        game_type: str,
        host_id: Optional[str] = None,
    ) -> Tuple[RoomStore, bool]:
        module = get_module(game_type)
        if room_code is None:
            room_code = await self._free_code()
        return await self.registry.create_room(room_code, module.game_type, module.initial_phase, host_id)

    async def _free_code(self) -> str:
        while True:
            code = f"{self.rng.randint(0, 9999):04d}"
            if not await self.registry.room_exists(code):
                return code

    async def claim_host(self, room_code: str, client_id: str) -> RoomStore:
        """
        Bind the shared display to a room. A room without a host takes the
        first claimant; a reconnecting host keeps its seat.
        """
        if self.auto_create and not await self.registry.room_exists(room_code):
            await self.create_room(room_code, self.default_game, host_id=client_id)

        async with self.registry.session(room_code) as room:
            if room.host_id is None:
                room.host_id = client_id
                logger.info(f"Host {client_id} claimed room {room_code}")
            elif room.host_id != client_id:
                raise NotPermitted(f"Room {room_code} already has a host")
            return room

    async def snapshot(self, room_code: str) -> OutRoomSnapshot:
        return build_snapshot(await self.registry.get_room(room_code))

    async def role_info(self, room_code: str, client_id: str) -> OutRoleInfo:
        return build_role_info(await self.registry.get_room(room_code), client_id)

    async def close_room(self, room_code: str, reason: str = "closed") -> None:
        if not await self.registry.room_exists(room_code):
            raise RoomNotFound(room_code)
        self._cancel_timer(room_code)
        self.channel.publish_event(room_code, OutRoomClosed(reason=reason))
        await self.registry.delete_room(room_code)
        self.channel.close_room(room_code)
        logger.info(f"Closed room {room_code} ({reason})")

    async def reap_idle(self, ttl_sec: int, now: Optional[int] = None) -> List[str]:
        """Close rooms with no activity for ttl_sec. Returns the closed codes."""
        now = now if now is not None else now_ts()
        closed: List[str] = []
        for code in await self.registry.idle_rooms(now, ttl_sec):
            try:
                await self.close_room(code, reason="idle")
            except RoomNotFound:
                continue
            closed.append(code)
        return closed

    async def shutdown(self) -> None:
        tasks = [t for _, t in self._timers.values()]
        self._timers.clear()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ----------------------------
    # Actions
    # ----------------------------
    async def apply(self, room_code: str, action, client_id: Optional[str] = None) -> Applied:
        """
        Validate and apply one action. Raises GameError subclasses; on error
        the room is left untouched and nothing is published.
        """
        if isinstance(action, InSnapshot):
            room = await self.registry.get_room(room_code)
            return Applied(phase=room.phase, epoch=room.phase_epoch, replies=[build_snapshot(room)])

        if isinstance(action, InGetRole):
            if not client_id:
                raise InvalidAction("client_id is required", code="MISSING_CLIENT_ID")
            room = await self.registry.get_room(room_code)
            return Applied(phase=room.phase, epoch=room.phase_epoch, replies=[build_role_info(room, client_id)])

        if isinstance(action, InReaction):
            room = await self.registry.get_room(room_code)
            if client_id is None or (client_id != room.host_id and client_id not in room.players):
                raise PlayerNotFound(client_id)
            event = OutReaction(client_id=client_id, kind=action.kind)
            self.channel.publish_event(room_code, event)
            return Applied(phase=room.phase, epoch=room.phase_epoch, events=[event])

        if isinstance(action, InJoin) and self.auto_create and not await self.registry.room_exists(room_code):
            await self.create_room(room_code, self.default_game)

        async with self.registry.session(room_code) as room:
            module = get_module(room.game_type)
            ctx = ActionContext(room=room, module=module, client_id=client_id, rng=self.rng)
            self._dispatch(ctx, action)

        # committed; publish before yielding to the loop so event order matches commit order
        for event in ctx.events:
            self.channel.publish_event(room_code, event)

        if ctx.closing:
            await self.close_room(room_code, reason=ctx.closing)
        else:
            self._sync_timer(room_code, room)

        return Applied(phase=room.phase, epoch=room.phase_epoch, events=ctx.events, replies=ctx.replies)

    def _dispatch(self, ctx: ActionContext, action) -> None:
        room = ctx.room

        if isinstance(action, InTimerTick):
            self._on_tick(ctx, action)
            return

        if isinstance(action, InJoin):
            if not ctx.client_id:
                raise InvalidAction("client_id is required", code="MISSING_CLIENT_ID")
            player, is_new = upsert_player(room, ctx.client_id, action.nickname, now_ts())
            ctx.reply(OutJoined(room_code=room.room_code, client_id=player.client_id, is_new=is_new))
            ctx.emit(OutPlayerJoined(client_id=player.client_id, nickname=player.nickname, rejoined=not is_new))
            return

        if isinstance(action, InLeave):
            player = drop_player(room, ctx.client_id)
            if room.turn is not None:
                turn_order.remove_client(room.turn, player.client_id)
            ctx.emit(OutPlayerLeft(client_id=player.client_id, nickname=player.nickname, reason="leave"))
            if room.started:
                ctx.auto_advance()
            return

        if isinstance(action, InDisconnect):
            player = ctx.player()
            player.connected = False
            player.last_seen = now_ts()
            ctx.emit(OutPlayerLeft(client_id=player.client_id, nickname=player.nickname, reason="disconnect"))
            return

        if isinstance(action, InStartGame):
            ctx.require_host()
            self._start_game(ctx)
            return

        if isinstance(action, InCloseRoom):
            ctx.require_host()
            ctx.closing = "closed by host"
            return

        if isinstance(action, InChangePhase):
            ctx.require_host()
            self._require_started(room)
            self._check_epoch(room, action)
            ctx.transition(action.phase)
            return

        if isinstance(action, InNextPhase):
            ctx.require_host()
            self._require_started(room)
            self._check_epoch(room, action)
            spec = ctx.module.phases[room.phase]
            for target in spec.next:
                if ctx.try_advance(target):
                    return
            raise InvalidTransition(room.phase, "next", "no outgoing edge is open")

        rule = ctx.module.actions.get(action.type)
        if rule is None:
            raise InvalidAction(f"{action.type} is not part of {room.game_type}", code="UNSUPPORTED_ACTION")
        self._require_started(room)
        if room.phase not in rule.phases:
            raise StalePhaseAction(action.type, room.phase)
        self._check_epoch(room, action)
        if rule.host_only:
            ctx.require_host()
        elif not ctx.is_host:
            ctx.player()
        rule.handler(ctx, action)

    def _check_epoch(self, room: RoomStore, action) -> None:
        """Reject an action stamped with a phase_epoch that is no longer current."""
        epoch = getattr(action, "epoch", None)
        if epoch is not None and epoch != room.phase_epoch:
            raise StalePhaseAction(action.type, f"{room.phase} (epoch {room.phase_epoch}, sent {epoch})")

    def _require_started(self, room: RoomStore) -> None:
        if not room.started:
            raise InvalidAction("Game has not started", code="NOT_STARTED")

    def _start_game(self, ctx: ActionContext) -> None:
        room, module = ctx.room, ctx.module
        if room.started and not module.is_terminal(room.phase):
            raise InvalidAction("Game already in progress", code="GAME_IN_PROGRESS")
        if len(room.players) < module.min_players:
            raise InvalidAction(
                f"{room.game_type} needs at least {module.min_players} players",
                code="NOT_ENOUGH_PLAYERS",
            )

        room.items = []
        room.turn = None
        room.teams = {}
        room.game = {}
        for p in room.players.values():
            p.submitted_count = 0
            p.is_vote_finished = False
            p.alive = True
            p.team = None
            p.role = None
            p.position = 0

        room.started = True
        room.round_no += 1
        if module.setup is not None:
            module.setup(ctx)

        ctx.emit(OutGameStarted(game_type=room.game_type, round_no=room.round_no))
        ctx.enter(module.initial_phase)
        logger.info(f"Room {room.room_code}: {room.game_type} round {room.round_no} started")

    def _on_tick(self, ctx: ActionContext, action: InTimerTick) -> None:
        room = ctx.room
        if room.timer is None or room.timer.epoch != action.epoch or room.phase_epoch != action.epoch:
            raise StalePhaseAction("timer_tick", room.phase)

        room.timer.remaining = max(0, room.timer.remaining - 1)
        ctx.emit(OutTimerTick(seconds_remaining=room.timer.remaining))
        if room.timer.remaining > 0:
            return

        target = ctx.module.timeout_target(room)
        logger.debug(f"Room {room.room_code}: {room.phase} timed out -> {target}")
        ctx.transition(target, forced=True)

    # ----------------------------
    # Countdown tasks
    # ----------------------------
    def _sync_timer(self, room_code: str, room: RoomStore) -> None:
        running = self._timers.get(room_code)
        if room.timer is None:
            self._cancel_timer(room_code)
            return
        if running is not None and running[0] == room.timer.epoch:
            return
        self._cancel_timer(room_code)
        task = asyncio.create_task(self._run_timer(room_code, room.timer.epoch))
        self._timers[room_code] = (room.timer.epoch, task)

    def _cancel_timer(self, room_code: str) -> None:
        running = self._timers.pop(room_code, None)
        if running is None:
            return
        task = running[1]
        # a tick that moved the phase must finish its own apply()
        if task is not asyncio.current_task():
            task.cancel()

    def timer_epoch(self, room_code: str) -> Optional[int]:
        running = self._timers.get(room_code)
        return running[0] if running else None

    async def _run_timer(self, room_code: str, epoch: int) -> None:
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                try:
                    applied = await self.apply(room_code, InTimerTick(epoch=epoch))
                except (StalePhaseAction, RoomNotFound):
                    return
                except GameError as e:
                    logger.warning(f"Timer for room {room_code} stopped: {e.code} {e.message}")
                    return
                if applied.epoch != epoch:
                    return
        except Exception:
            logger.exception(f"Timer for room {room_code} crashed")
        finally:
            running = self._timers.get(room_code)
            if running is not None and running[1] is asyncio.current_task():
                self._timers.pop(room_code, None)
