"""RPC records and the client clerk of the sharded key/value service.

The clerk asks the shard master which group holds a key's shard, then talks
to that group's servers, refreshing the configuration whenever no server of
the group could serve the request.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, Sequence

from . import shardmaster
from .shardmaster import NSHARDS, Config

_RETRY_INTERVAL = 0.1


class Err(str, Enum):
    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"


@dataclass
class PutAppendArgs:
    key: str
    value: str
    op: str  # "Put" or "Append"


@dataclass
class PutAppendReply:
    err: Err = Err.OK


@dataclass
class GetArgs:
    key: str


@dataclass
class GetReply:
    err: Err = Err.OK
    value: str = ""


class _Server(Protocol):
    def call(self, method: str, args: Any) -> Any | None: ...


def key2shard(key: str) -> int:
    """Return the shard that holds ``key``, chosen by its first byte."""
    encoded = key.encode()
    shard = encoded[0] if encoded else 0
    return shard % NSHARDS


class Clerk:
    """Client of the sharded key/value service; retries forever."""

    def __init__(
        self,
        masters: Sequence[_Server],
        make_end: Callable[[str], _Server],
        retry_interval: float = _RETRY_INTERVAL,
    ) -> None:
        self._sm = shardmaster.Clerk(masters, retry_interval=retry_interval)
        self._make_end = make_end
        self._retry_interval = retry_interval
        self.config = Config()

    def _servers_for(self, key: str) -> list[str]:
        gid = self.config.shards[key2shard(key)]
        return self.config.groups.get(gid, [])

    def _refresh(self) -> None:
        time.sleep(self._retry_interval)
        self.config = self._sm.query(-1)

    def get(self, key: str) -> str:
        """Fetch the value of ``key``; return "" if the key does not exist."""
        args = GetArgs(key=key)
        while True:
            for name in self._servers_for(key):
                reply = self._make_end(name).call("ShardKV.Get", args)
                if reply is None:
                    continue
                if reply.err in (Err.OK, Err.NO_KEY):
                    return reply.value
                if reply.err == Err.WRONG_GROUP:
                    break
            self._refresh()

    def put_append(self, key: str, value: str, op: str) -> None:
        """Send a Put or Append of ``value`` to ``key``."""
        args = PutAppendArgs(key=key, value=value, op=op)
        while True:
            for name in self._servers_for(key):
                reply = self._make_end(name).call("ShardKV.PutAppend", args)
                if reply is None:
                    continue
                if reply.err == Err.OK:
                    return
                if reply.err == Err.WRONG_GROUP:
                    break
            self._refresh()

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")