"""Log entries, apply messages and RPC argument/reply records for Raft."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """The role a Raft peer currently plays."""

    LEADER = "Leader"
    FOLLOWER = "Follower"
    CANDIDATE = "Candidates"


@dataclass
class LogEntry:
    """One command in the replicated log, with the term it was created in."""

    command: Any
    term: int


@dataclass
class ApplyMsg:
    """A message delivered to the service.

    With ``command_valid`` true it carries a committed log entry;
    otherwise it carries a snapshot to install.
    """

    command_valid: bool
    command: Any = None
    command_index: int = 0
    command_term: int = 0
    snapshot: bytes = b""
    last_included_index: int = 0
    last_included_term: int = 0


@dataclass
class RequestVoteArgs:
    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    term: int
    leader_id: int
    prev_log_index: int
    prev_log_term: int
    entries: list[LogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesReply:
    term: int = 0
    success: bool = False
    conflict_index: int = -1
    conflict_term: int = -1


@dataclass
class InstallSnapshotArgs:
    term: int
    leader_id: int
    last_included_index: int
    last_included_term: int
    offset: int = 0
    data: bytes = b""
    done: bool = True


@dataclass
class InstallSnapshotReply:
    term: int = 0