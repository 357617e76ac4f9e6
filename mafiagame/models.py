"""Data models for the Mafia Nights game."""

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    """Player roles."""
    VILLAGER = "Villager"
    MAFIA = "Mafia"
    DOCTOR = "Doctor"
    DETECTIVE = "Detective"
    SHERIFF = "Sheriff"
    JESTER = "Jester"


class PlayerStatus(str, Enum):
    ALIVE = "Alive"
    DEAD = "Dead"


class Team(str, Enum):
    """Winning sides."""
    TOWN = "Town"
    MAFIA = "Mafia"
    JESTER = "Jester"


class GamePhase(str, Enum):
    SETUP = "Setup"
    DAY = "Day"
    NIGHT = "Night"
    GAME_OVER = "Game Over"


class AbilityFlag(str, Enum):
    """One-time abilities, named the way missions refer to them."""
    CAN_CONVERT = "MafiaCanConvert"
    CAN_REVIVE = "DoctorCanRevive"
    CAN_CHANGE_ROLE = "VillagerCanChangeRole"
    CAN_REVEAL_SELF = "MafiaCanRevealSelf"
    CAN_INCREASE_VOTE = "VillagerCanIncreaseVote"

    @property
    def field(self) -> str:
        """Name of the Player attribute holding this flag."""
        return ABILITY_FIELDS[self]


ABILITY_FIELDS = {
    AbilityFlag.CAN_CONVERT: "can_convert",
    AbilityFlag.CAN_REVIVE: "can_revive",
    AbilityFlag.CAN_CHANGE_ROLE: "can_change_role",
    AbilityFlag.CAN_REVEAL_SELF: "can_reveal_self",
    AbilityFlag.CAN_INCREASE_VOTE: "can_increase_vote",
}

# Roles a villager may pick with VillagerCanChangeRole
CHANGE_ROLE_CHOICES = (Role.MAFIA, Role.DOCTOR, Role.DETECTIVE)


class ActionType(str, Enum):
    KILL = "Kill"
    PROTECT = "Protect"
    INVESTIGATE = "Investigate"
    SHOOT = "Shoot"
    CONVERT = "Convert"
    REVEAL = "Reveal"
    REVIVE = "Revive"
    CHANGE_ROLE = "ChangeRole"
    INCREASE_VOTE_POWER = "IncreaseVotePower"


class ActionStatus(str, Enum):
    LOGGED = "Logged"
    RESOLVED = "Resolved"


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class TrialStatus(str, Enum):
    ACTIVE = "Active"
    RESOLVED = "Resolved"


class VoteType(str, Enum):
    GUILTY = "GUILTY"
    NOT_GUILTY = "NOTGUILTY"


class Verdict(str, Enum):
    GUILTY = "GUILTY"
    NOT_GUILTY = "NOT GUILTY"


class ArchiveType(str, Enum):
    DOCTOR_PROTECTION = "Doctor Protection"
    MAFIA_KILL = "Mafia Kill"
    SHERIFF_ACTION = "Sheriff Action"
    TRIAL_RESULT = "Trial Result"
    NIGHT_VOTE = "Night Vote"


def new_id(prefix: str) -> str:
    """Generate a record ID such as ``TRIAL_3f9c1a2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _json_list(value: Optional[str]) -> List[str]:
    return json.loads(value) if value else []


@dataclass
class Player:
    """Canonical registry record for a participant."""
    player_id: str
    name: str
    role: Role = Role.VILLAGER
    status: PlayerStatus = PlayerStatus.ALIVE
    voting_power: int = 1
    can_convert: bool = False
    can_revive: bool = False
    can_change_role: bool = False
    can_reveal_self: bool = False
    can_increase_vote: bool = False
    consumed_abilities: List[str] = field(default_factory=list)
    main_used: bool = False
    sheriff_shot_used: bool = False
    investigation_history: List[str] = field(default_factory=list)
    revealed_teammates: List[str] = field(default_factory=list)
    missions_completed: int = 0
    current_mission_id: Optional[str] = None
    is_jury_member: bool = False
    night_vote_used: bool = False
    version: int = 0

    @property
    def is_alive(self) -> bool:
        return self.status == PlayerStatus.ALIVE

    @property
    def is_mafia(self) -> bool:
        return self.role == Role.MAFIA

    def has_ability(self, ability: AbilityFlag) -> bool:
        return bool(getattr(self, ability.field))

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Player":
        data = dict(row)
        data["role"] = Role(data["role"])
        data["status"] = PlayerStatus(data["status"])
        for name in PLAYER_BOOL_FIELDS:
            data[name] = bool(data[name])
        for name in PLAYER_LIST_FIELDS:
            data[name] = _json_list(data[name])
        return cls(**data)


PLAYER_BOOL_FIELDS = (
    "can_convert",
    "can_revive",
    "can_change_role",
    "can_reveal_self",
    "can_increase_vote",
    "main_used",
    "sheriff_shot_used",
    "is_jury_member",
    "night_vote_used",
)
PLAYER_LIST_FIELDS = ("consumed_abilities", "investigation_history", "revealed_teammates")


@dataclass
class NightAction:
    """A submitted night action. Only the status changes after creation."""
    action_id: str
    day: int
    actor_id: str
    action_type: ActionType
    target_id: Optional[str]
    timestamp: int
    status: ActionStatus = ActionStatus.LOGGED
    result: Optional[str] = None
    version: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NightAction":
        data = dict(row)
        data["action_type"] = ActionType(data["action_type"])
        data["status"] = ActionStatus(data["status"])
        return cls(**data)


@dataclass
class Accusation:
    accusation_id: str
    accuser_id: str
    accused_id: str
    audio_evidence_url: Optional[str]
    submission_time: int
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approval_time: Optional[int] = None
    trial_started: bool = False
    trial_id: Optional[str] = None
    version: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Accusation":
        data = dict(row)
        data["approval_status"] = ApprovalStatus(data["approval_status"])
        data["trial_started"] = bool(data["trial_started"])
        return cls(**data)


@dataclass
class Trial:
    trial_id: str
    accusation_id: str
    accused_id: str
    audio_evidence_url: Optional[str]
    start_time: int
    voting_deadline: int
    status: TrialStatus = TrialStatus.ACTIVE
    guilty_tally: int = 0
    not_guilty_tally: int = 0
    verdict: Optional[Verdict] = None
    resolved_time: Optional[int] = None
    version: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Trial":
        data = dict(row)
        data["status"] = TrialStatus(data["status"])
        if data["verdict"] is not None:
            data["verdict"] = Verdict(data["verdict"])
        return cls(**data)


@dataclass
class Vote:
    """A jury ballot. Append-only."""
    vote_id: str
    trial_id: str
    voter_id: str
    vote_type: VoteType
    voting_power: int
    timestamp: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Vote":
        data = dict(row)
        data["vote_type"] = VoteType(data["vote_type"])
        return cls(**data)


@dataclass
class NightVoteTally:
    """Weighted town votes against one player on one night."""
    tally_id: str
    day: int
    target_id: str
    votes: int = 0
    version: int = 0


@dataclass
class Mission:
    mission_id: str
    description: str
    ability_unlocked: str  # an AbilityFlag value


@dataclass
class ArchiveEntry:
    """A resolved outcome, read back by the nightly recap."""
    entry_id: str
    timestamp: int
    day: int
    action_type: ArchiveType
    details: str
    player_ids: List[str]
    outcome: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ArchiveEntry":
        data = dict(row)
        data["action_type"] = ArchiveType(data["action_type"])
        data["player_ids"] = _json_list(data["player_ids"])
        return cls(**data)


@dataclass
class GameState:
    """Singleton game state."""
    current_day: int = 0
    phase: GamePhase = GamePhase.SETUP
    last_accused_player_id: Optional[str] = None
    winner: Optional[Team] = None
    roster_locked: bool = False
    version: int = 0


@dataclass
class NightRecap:
    """What happened during one night, plus any trials resolved that day."""
    day: int
    doctor_protections: List[str] = field(default_factory=list)
    mafia_kills: List[str] = field(default_factory=list)
    mafia_protected: List[str] = field(default_factory=list)
    sheriff_kills: List[str] = field(default_factory=list)
    night_vote_leaders: List[str] = field(default_factory=list)
    trial_results: List[Dict[str, str]] = field(default_factory=list)

    @property
    def deaths(self) -> List[str]:
        return self.mafia_kills + [p for p in self.sheriff_kills if p not in self.mafia_kills]


@dataclass
class ActionResult:
    """Result of performing a game action."""
    success: bool
    message: str
    public_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
