# app/domain/common/fsm.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Union

from app.store.models import RoomStore

if TYPE_CHECKING:
    from app.domain.engine import ActionContext

# A guard returns None when the edge may be taken, else the reason it may not.
Guard = Callable[[RoomStore], Optional[str]]
EnterHook = Callable[["ActionContext", str], None]
ActionHandler = Callable[["ActionContext", Any], None]
Setup = Callable[["ActionContext"], None]
TimeoutTarget = Union[str, Callable[[RoomStore], str]]


@dataclass(frozen=True)
class PhaseSpec:
    """
    next: phases reachable from this one; empty means terminal.
    timer_sec: countdown armed on entry (0 = untimed).
    on_timeout: phase forced when the countdown hits zero, or a function of the room.
    """
    next: Tuple[str, ...] = ()
    timer_sec: int = 0
    on_timeout: Optional[TimeoutTarget] = None


@dataclass(frozen=True)
class ActionRule:
    phases: Tuple[str, ...]
    handler: ActionHandler
    host_only: bool = False


@dataclass
class GameModule:
    """
    Declarative description of one game type. The engine is generic over it:
    adding a game means adding a module, not engine code.
    """
    game_type: str
    initial_phase: str
    phases: Dict[str, PhaseSpec]
    actions: Dict[str, ActionRule] = field(default_factory=dict)
    guards: Dict[Tuple[str, str], Guard] = field(default_factory=dict)
    on_enter: Dict[str, EnterHook] = field(default_factory=dict)
    # phase -> completion check naming the phase to advance to, or None while waiting
    auto_next: Dict[str, Callable[[RoomStore], Optional[str]]] = field(default_factory=dict)
    setup: Optional[Setup] = None
    min_players: int = 1
    public_state: Optional[Callable[[RoomStore], Dict[str, Any]]] = None
    private_view: Optional[Callable[[RoomStore, str], Dict[str, Any]]] = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject tables that point at undeclared phases."""
        if self.initial_phase not in self.phases:
            raise ValueError(f"{self.game_type}: unknown initial phase {self.initial_phase}")
        for name, spec in self.phases.items():
            for target in spec.next:
                if target not in self.phases:
                    raise ValueError(f"{self.game_type}: {name} -> {target} is undeclared")
            if spec.timer_sec and spec.on_timeout is None:
                raise ValueError(f"{self.game_type}: timed phase {name} has no timeout target")
            if isinstance(spec.on_timeout, str) and spec.on_timeout not in spec.next:
                raise ValueError(f"{self.game_type}: timeout {name} -> {spec.on_timeout} is undeclared")
        for (src, dst) in self.guards:
            if dst not in self.phases.get(src, PhaseSpec()).next:
                raise ValueError(f"{self.game_type}: guard on undeclared edge {src} -> {dst}")
        for action, rule in self.actions.items():
            for phase in rule.phases:
                if phase not in self.phases:
                    raise ValueError(f"{self.game_type}: action {action} bound to unknown phase {phase}")

    def can_transition(self, current: str, target: str) -> bool:
        spec = self.phases.get(current)
        return spec is not None and target in spec.next

    def check_guard(self, room: RoomStore, target: str) -> Optional[str]:
        guard = self.guards.get((room.phase, target))
        if guard is None:
            return None
        return guard(room)

    def is_terminal(self, phase: str) -> bool:
        spec = self.phases.get(phase)
        return spec is not None and not spec.next

    def timeout_target(self, room: RoomStore) -> Optional[str]:
        spec = self.phases.get(room.phase)
        if spec is None or spec.on_timeout is None:
            return None
        if callable(spec.on_timeout):
            return spec.on_timeout(room)
        return spec.on_timeout
