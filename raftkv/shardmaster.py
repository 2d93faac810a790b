"""The shard master's configuration records, RPC records and client clerk.

The shard master assigns each of ``NSHARDS`` shards to a replica group.
Configurations are numbered; configuration 0 has no groups and every shard
assigned to the invalid group 0.

Servers are reached through objects with a ``call(method, args)`` method that
returns the handler's reply, or ``None`` when the request or reply was lost.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

NSHARDS = 10

OK = "OK"

_RETRY_INTERVAL = 0.1


def _unassigned_shards() -> list[int]:
    return [0] * NSHARDS


@dataclass
class Config:
    """An assignment of shards to groups."""

    num: int = 0
    shards: list[int] = field(default_factory=_unassigned_shards)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.shards = list(self.shards)
        if len(self.shards) != NSHARDS:
            raise ValueError(f"a configuration holds exactly {NSHARDS} shards, got {len(self.shards)}")


@dataclass
class JoinArgs:
    servers: dict[int, list[str]]


@dataclass
class JoinReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class LeaveArgs:
    gids: list[int]


@dataclass
class LeaveReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class MoveArgs:
    shard: int
    gid: int


@dataclass
class MoveReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class QueryArgs:
    num: int


@dataclass
class QueryReply:
    wrong_leader: bool = False
    err: str = ""
    config: Config = field(default_factory=Config)


class _Server(Protocol):
    def call(self, method: str, args: Any) -> Any | None: ...


def nrand() -> int:
    """Return a random non-negative integer below 2**62."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Client of the shard master service; retries until a leader answers."""

    def __init__(self, servers: Sequence[_Server], retry_interval: float = _RETRY_INTERVAL) -> None:
        self._servers = list(servers)
        self._retry_interval = retry_interval

    def _rpc(self, method: str, args: Any) -> Any:
        while True:
            for server in self._servers:
                reply = server.call(method, args)
                if reply is not None and not reply.wrong_leader:
                    return reply
            time.sleep(self._retry_interval)

    def query(self, num: int) -> Config:
        """Fetch configuration ``num``, or the latest one if ``num`` is -1."""
        return self._rpc("ShardMaster.Query", QueryArgs(num=num)).config

    def join(self, servers: dict[int, list[str]]) -> None:
        """Add groups, given as a mapping of group id to server names."""
        self._rpc("ShardMaster.Join", JoinArgs(servers=servers))

    def leave(self, gids: Sequence[int]) -> None:
        """Remove the groups with the given ids."""
        self._rpc("ShardMaster.Leave", LeaveArgs(gids=list(gids)))

    def move(self, shard: int, gid: int) -> None:
        """Hand ``shard`` over to group ``gid``."""
        self._rpc("ShardMaster.Move", MoveArgs(shard=shard, gid=gid))