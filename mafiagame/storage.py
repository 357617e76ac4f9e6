"""Database storage layer for Mafia Nights."""

import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from .config import DATABASE_PATH, DATABASE_TIMEOUT
from .errors import ConflictError, DependencyError, ValidationError
from .models import (
    Accusation,
    ApprovalStatus,
    ArchiveEntry,
    GamePhase,
    GameState,
    Mission,
    NightAction,
    NightVoteTally,
    Player,
    PlayerStatus,
    Role,
    Team,
    Trial,
    TrialStatus,
    Vote,
)


logger = logging.getLogger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS players (
        player_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'Villager',
        status TEXT NOT NULL DEFAULT 'Alive' CHECK(status IN ('Alive','Dead')),
        voting_power INTEGER NOT NULL DEFAULT 1 CHECK(voting_power >= 1),
        can_convert INTEGER NOT NULL DEFAULT 0,
        can_revive INTEGER NOT NULL DEFAULT 0,
        can_change_role INTEGER NOT NULL DEFAULT 0,
        can_reveal_self INTEGER NOT NULL DEFAULT 0,
        can_increase_vote INTEGER NOT NULL DEFAULT 0,
        consumed_abilities TEXT NOT NULL DEFAULT '[]',
        main_used INTEGER NOT NULL DEFAULT 0,
        sheriff_shot_used INTEGER NOT NULL DEFAULT 0,
        investigation_history TEXT NOT NULL DEFAULT '[]',
        revealed_teammates TEXT NOT NULL DEFAULT '[]',
        missions_completed INTEGER NOT NULL DEFAULT 0,
        current_mission_id TEXT,
        is_jury_member INTEGER NOT NULL DEFAULT 0,
        night_vote_used INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS night_actions (
        action_id TEXT PRIMARY KEY,
        day INTEGER NOT NULL,
        actor_id TEXT NOT NULL,
        action_type TEXT NOT NULL,
        target_id TEXT,
        timestamp INTEGER NOT NULL,
        status TEXT NOT NULL CHECK(status IN ('Logged','Resolved')),
        result TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accusations (
        accusation_id TEXT PRIMARY KEY,
        accuser_id TEXT NOT NULL,
        accused_id TEXT NOT NULL,
        audio_evidence_url TEXT,
        submission_time INTEGER NOT NULL,
        approval_status TEXT NOT NULL CHECK(approval_status IN ('Pending','Approved','Rejected')),
        approval_time INTEGER,
        trial_started INTEGER NOT NULL DEFAULT 0,
        trial_id TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS trials (
        trial_id TEXT PRIMARY KEY,
        accusation_id TEXT NOT NULL UNIQUE,
        accused_id TEXT NOT NULL,
        audio_evidence_url TEXT,
        start_time INTEGER NOT NULL,
        voting_deadline INTEGER NOT NULL,
        status TEXT NOT NULL CHECK(status IN ('Active','Resolved')),
        guilty_tally INTEGER NOT NULL DEFAULT 0 CHECK(guilty_tally >= 0),
        not_guilty_tally INTEGER NOT NULL DEFAULT 0 CHECK(not_guilty_tally >= 0),
        verdict TEXT,
        resolved_time INTEGER,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    # Only one trial may be Active at a time
    "CREATE UNIQUE INDEX IF NOT EXISTS one_active_trial ON trials(status) WHERE status = 'Active'",
    """
    CREATE TABLE IF NOT EXISTS votes (
        vote_id TEXT PRIMARY KEY,
        trial_id TEXT NOT NULL,
        voter_id TEXT NOT NULL,
        vote_type TEXT NOT NULL CHECK(vote_type IN ('GUILTY','NOTGUILTY')),
        voting_power INTEGER NOT NULL CHECK(voting_power >= 1),
        timestamp INTEGER NOT NULL,
        UNIQUE(trial_id, voter_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS night_votes (
        tally_id TEXT PRIMARY KEY,
        day INTEGER NOT NULL,
        target_id TEXT NOT NULL,
        votes INTEGER NOT NULL DEFAULT 0 CHECK(votes >= 0),
        version INTEGER NOT NULL DEFAULT 0,
        UNIQUE(day, target_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS missions (
        mission_id TEXT PRIMARY KEY,
        description TEXT NOT NULL,
        ability_unlocked TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS archive (
        entry_id TEXT PRIMARY KEY,
        timestamp INTEGER NOT NULL,
        day INTEGER NOT NULL,
        action_type TEXT NOT NULL,
        details TEXT NOT NULL,
        player_ids TEXT NOT NULL DEFAULT '[]',
        outcome TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS state (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
)

# Table name -> primary key column, for versioned patches
TABLE_KEYS = {
    "players": "player_id",
    "night_actions": "action_id",
    "accusations": "accusation_id",
    "trials": "trial_id",
    "night_votes": "tally_id",
}

DEFAULT_STATE = {
    "version": 0,
    "current_day": 0,
    "phase": GamePhase.SETUP.value,
    "last_accused_player_id": None,
    "winner": None,
    "roster_locked": False,
}


def encode_value(value: Any) -> Any:
    """Convert a model value into something SQLite stores."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (list, tuple, set)):
        return json.dumps(list(value))
    return value


@dataclass(frozen=True)
class Increment:
    """An atomic ``column = column + amount`` update."""
    amount: int


@dataclass
class WriteBatch:
    """Field-level patches and appends committed together in one transaction.

    Every patch names the version it was computed from; if the row has moved
    on, the whole batch is rolled back with a ConflictError.
    """
    updates: List[Tuple[str, str, Optional[int], Dict[str, Any]]] = field(default_factory=list)
    inserts: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    state_version: Optional[int] = None
    state: Dict[str, Any] = field(default_factory=dict)
    expected_state: Optional[int] = None
    checks: List[Tuple[str, Dict[str, Any], int]] = field(default_factory=list)

    def update(self, table: str, key: str, version: Optional[int], **fields) -> "WriteBatch":
        if table not in TABLE_KEYS:
            raise ValueError(f"Table {table} does not support patches")
        self.updates.append((table, key, version, fields))
        return self

    def insert(self, table: str, record: Any) -> "WriteBatch":
        row = asdict(record) if is_dataclass(record) else dict(record)
        self.inserts.append((table, row))
        return self

    def update_state(self, version: int, **values) -> "WriteBatch":
        self.state_version = version
        self.state.update(values)
        return self

    def expect_state(self, version: int) -> "WriteBatch":
        """Fail the batch if the game state has moved past ``version``. Does not bump it."""
        self.expected_state = version
        return self

    def expect_count(self, table: str, count: int, **where) -> "WriteBatch":
        """Fail the batch unless exactly ``count`` rows match ``where`` once every write is applied."""
        self.checks.append((table, where, count))
        return self

    def __len__(self) -> int:
        return len(self.updates) + len(self.inserts) + len(self.state)


class GameStorage:
    """Handles all database operations for the game."""

    def __init__(self, db_path: str = DATABASE_PATH, timeout: float = DATABASE_TIMEOUT):
        self.db_path = db_path
        self.timeout = timeout

    @asynccontextmanager
    async def _connect(self):
        try:
            db = await aiosqlite.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        except sqlite3.OperationalError as e:
            raise DependencyError(f"Could not open the game database: {e}") from e
        db.row_factory = aiosqlite.Row
        try:
            yield db
        except sqlite3.OperationalError as e:
            raise DependencyError(f"Game database error: {e}") from e
        finally:
            await db.close()

    async def _fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        async with self._connect() as db:
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def _fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        rows = await self._fetch_all(sql, params)
        return rows[0] if rows else None

    async def initialize(self):
        """Initialize the database with required tables."""
        async with self._connect() as db:
            for statement in SCHEMA:
                await db.execute(statement)
            for key, value in DEFAULT_STATE.items():
                await db.execute(
                    "INSERT OR IGNORE INTO state (key, value) VALUES (?, ?)",
                    (key, json.dumps(encode_value(value))),
                )

    async def commit(self, batch: WriteBatch):
        """Apply a batch atomically. Raises ConflictError if any row moved on."""
        if not len(batch) and batch.state_version is None:
            return

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                if batch.expected_state is not None:
                    async with db.execute("SELECT value FROM state WHERE key = 'version'") as cursor:
                        row = await cursor.fetchone()
                    if row is None or int(json.loads(row["value"])) != batch.expected_state:
                        raise ConflictError("The game moved on while this action was being processed.")

                for table, key, version, fields in batch.updates:
                    await self._apply_update(db, table, key, version, fields)

                for table, row in batch.inserts:
                    columns = ", ".join(row)
                    placeholders = ", ".join("?" for _ in row)
                    await db.execute(
                        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                        [encode_value(v) for v in row.values()],
                    )

                if batch.state_version is not None:
                    cursor = await db.execute(
                        "UPDATE state SET value = CAST(value AS INTEGER) + 1 "
                        "WHERE key = 'version' AND CAST(value AS INTEGER) = ?",
                        (batch.state_version,),
                    )
                    if cursor.rowcount == 0:
                        raise ConflictError("The game state changed while this action was being processed.")
                for key, value in batch.state.items():
                    await db.execute(
                        "INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)",
                        (key, json.dumps(encode_value(value))),
                    )

                for table, where, count in batch.checks:
                    await self._check_count(db, table, where, count)

                await db.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                await db.execute("ROLLBACK")
                # Two writers raced for the same unique slot; anything else is a bad value
                if "UNIQUE" in str(e):
                    raise ConflictError(f"Write rejected by a uniqueness rule: {e}") from e
                raise ValidationError(f"Write rejected by a data rule: {e}") from e
            except BaseException:
                await db.execute("ROLLBACK")
                raise

    async def _apply_update(self, db, table: str, key: str, version: Optional[int], fields: Dict[str, Any]):
        assignments = []
        params = []
        for column, value in fields.items():
            if isinstance(value, Increment):
                assignments.append(f"{column} = {column} + ?")
                params.append(value.amount)
            else:
                assignments.append(f"{column} = ?")
                params.append(encode_value(value))
        assignments.append("version = version + 1")

        key_column = TABLE_KEYS[table]
        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {key_column} = ?"
        params.append(key)
        if version is not None:
            sql += " AND version = ?"
            params.append(version)

        cursor = await db.execute(sql, params)
        if cursor.rowcount == 0:
            logger.debug(f"Stale write to {table} {key} (expected version {version})")
            raise ConflictError(f"{table} row {key} changed while this action was being processed.")

    @staticmethod
    async def _check_count(db, table: str, where: Dict[str, Any], count: int):
        sql = f"SELECT COUNT(*) FROM {table}"
        if where:
            sql += " WHERE " + " AND ".join(f"{column} = ?" for column in where)
        async with db.execute(sql, [encode_value(v) for v in where.values()]) as cursor:
            (found,) = await cursor.fetchone()
        if found != count:
            logger.debug(f"Expected {count} {table} rows matching {where}, found {found}")
            raise ConflictError(f"{table} changed while this action was being processed.")

    # Players

    async def get_player(self, player_id: str) -> Optional[Player]:
        """Get a player by ID."""
        row = await self._fetch_one("SELECT * FROM players WHERE player_id = ?", (player_id,))
        return Player.from_row(row) if row else None

    async def find_player_by_name(self, name: str) -> Optional[Player]:
        row = await self._fetch_one(
            "SELECT * FROM players WHERE lower(name) = lower(?) ORDER BY rowid LIMIT 1", (name.strip(),)
        )
        return Player.from_row(row) if row else None

    async def list_players(self, status: Optional[PlayerStatus] = None, role: Optional[Role] = None) -> List[Player]:
        """Get all players, optionally filtered by status and role, in join order."""
        sql = "SELECT * FROM players WHERE 1 = 1"
        params = []
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        if role is not None:
            sql += " AND role = ?"
            params.append(role.value)
        rows = await self._fetch_all(sql + " ORDER BY rowid", tuple(params))
        return [Player.from_row(row) for row in rows]

    # Night actions

    async def get_night_actions(self, day: int, status=None) -> List[NightAction]:
        sql = "SELECT * FROM night_actions WHERE day = ?"
        params = [day]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        rows = await self._fetch_all(sql + " ORDER BY timestamp, rowid", tuple(params))
        return [NightAction.from_row(row) for row in rows]

    # Accusations

    async def get_accusation(self, accusation_id: str) -> Optional[Accusation]:
        row = await self._fetch_one("SELECT * FROM accusations WHERE accusation_id = ?", (accusation_id,))
        return Accusation.from_row(row) if row else None

    async def list_accusations(self, status: Optional[ApprovalStatus] = None) -> List[Accusation]:
        if status is None:
            rows = await self._fetch_all("SELECT * FROM accusations ORDER BY submission_time, rowid")
        else:
            rows = await self._fetch_all(
                "SELECT * FROM accusations WHERE approval_status = ? ORDER BY submission_time, rowid",
                (status.value,),
            )
        return [Accusation.from_row(row) for row in rows]

    # Trials

    async def get_trial(self, trial_id: str) -> Optional[Trial]:
        row = await self._fetch_one("SELECT * FROM trials WHERE trial_id = ?", (trial_id,))
        return Trial.from_row(row) if row else None

    async def list_trials(self, status: Optional[TrialStatus] = None) -> List[Trial]:
        if status is None:
            rows = await self._fetch_all("SELECT * FROM trials ORDER BY start_time, rowid")
        else:
            rows = await self._fetch_all(
                "SELECT * FROM trials WHERE status = ? ORDER BY start_time, rowid", (status.value,)
            )
        return [Trial.from_row(row) for row in rows]

    # Votes

    async def get_votes(self, trial_id: Optional[str] = None, voter_id: Optional[str] = None) -> List[Vote]:
        sql = "SELECT * FROM votes WHERE 1 = 1"
        params = []
        if trial_id is not None:
            sql += " AND trial_id = ?"
            params.append(trial_id)
        if voter_id is not None:
            sql += " AND voter_id = ?"
            params.append(voter_id)
        rows = await self._fetch_all(sql + " ORDER BY timestamp, rowid", tuple(params))
        return [Vote.from_row(row) for row in rows]

    async def get_night_votes(self, day: int) -> List[NightVoteTally]:
        """Town night vote tallies for one day, most votes first."""
        rows = await self._fetch_all(
            "SELECT * FROM night_votes WHERE day = ? ORDER BY votes DESC, rowid", (day,)
        )
        return [NightVoteTally(**row) for row in rows]

    # Missions

    async def get_mission(self, mission_id: str) -> Optional[Mission]:
        row = await self._fetch_one("SELECT * FROM missions WHERE mission_id = ?", (mission_id,))
        return Mission(**row) if row else None

    async def list_missions(self) -> List[Mission]:
        rows = await self._fetch_all("SELECT * FROM missions ORDER BY rowid")
        return [Mission(**row) for row in rows]

    async def save_mission(self, mission: Mission):
        """Add or replace a catalog mission."""
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO missions (mission_id, description, ability_unlocked) VALUES (?, ?, ?)",
                (mission.mission_id, mission.description, mission.ability_unlocked),
            )

    # Archive

    async def get_archive(self, day: Optional[int] = None) -> List[ArchiveEntry]:
        if day is None:
            rows = await self._fetch_all("SELECT * FROM archive ORDER BY timestamp, rowid")
        else:
            rows = await self._fetch_all("SELECT * FROM archive WHERE day = ? ORDER BY timestamp, rowid", (day,))
        return [ArchiveEntry.from_row(row) for row in rows]

    # State

    async def get_state(self, key: str) -> Optional[Any]:
        """Get a state value."""
        row = await self._fetch_one("SELECT value FROM state WHERE key = ?", (key,))
        return json.loads(row["value"]) if row and row["value"] is not None else None

    async def set_state(self, key: str, value: Any):
        """Set a loose state value (bot settings, not game rules)."""
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)",
                (key, json.dumps(encode_value(value))),
            )

    async def get_game_state(self) -> GameState:
        rows = await self._fetch_all("SELECT key, value FROM state")
        values = dict(DEFAULT_STATE)
        values.update({row["key"]: json.loads(row["value"]) for row in rows if row["value"] is not None})
        return GameState(
            current_day=int(values["current_day"]),
            phase=GamePhase(values["phase"]),
            last_accused_player_id=values["last_accused_player_id"],
            winner=Team(values["winner"]) if values["winner"] else None,
            roster_locked=bool(values["roster_locked"]),
            version=int(values["version"]),
        )

    async def clear_all_game_data(self):
        """Clear all game data for a fresh start. The mission catalog and bot settings survive."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            for table in ("players", "night_actions", "accusations", "trials", "votes", "night_votes", "archive"):
                await db.execute(f"DELETE FROM {table}")
            for key, value in DEFAULT_STATE.items():
                await db.execute(
                    "INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)",
                    (key, json.dumps(encode_value(value))),
                )
            await db.execute("COMMIT")
