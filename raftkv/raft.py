"""A Raft consensus peer with log compaction through snapshots.

Peers are reached through objects with a ``call(method, args)`` method that
returns the handler's reply, or ``None`` when the request or the reply was
lost. The handlers are ``request_vote``, ``append_entries`` and
``install_snapshot``, called as ``"Raft.RequestVote"``,
``"Raft.AppendEntries"`` and ``"Raft.InstallSnapshot"``.
"""

from __future__ import annotations

import logging
import pickle
import queue
import random
import threading
import time
from typing import Any, Protocol, Sequence

from .messages import (
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    InstallSnapshotArgs,
    InstallSnapshotReply,
    LogEntry,
    RequestVoteArgs,
    RequestVoteReply,
    Role,
)
from .persister import Persister
from .raftlog import RaftLog

logger = logging.getLogger(__name__)

_TICK = 0.01
_ELECTION_TIMEOUT_MS = 200
_ELECTION_TIMEOUT_SPREAD_MS = 150
_HEARTBEAT_INTERVAL = 0.1


class _Peer(Protocol):
    def call(self, method: str, args: Any) -> Any | None: ...


class _ApplyQueue(Protocol):
    def put(self, item: ApplyMsg) -> None: ...


class Raft:
    """A single Raft peer."""

    def __init__(
        self,
        peers: Sequence[_Peer],
        me: int,
        persister: Persister,
        apply_queue: _ApplyQueue,
    ) -> None:
        self._lock = threading.Lock()
        self._dead = threading.Event()
        self.peers = list(peers)
        self.persister = persister
        self.me = me
        self.apply_queue = apply_queue

        self.current_term = 0
        self.voted_for = -1
        self.log = RaftLog()

        self.commit_index = 0
        self.last_applied = 0

        self.next_index: list[int] = []
        self.match_index: list[int] = []

        self.role = Role.FOLLOWER
        self.leader_id = -1
        self.last_active_time = time.monotonic()
        self.last_broadcast_time = float("-inf")

        self._read_persist(persister.read_raft_state())
        self._install_snapshot_to_application()

    # ----------------------------------------------------------------- state

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self._lock:
            return self.current_term, self.role is Role.LEADER

    def _encode_state(self) -> bytes:
        return pickle.dumps(
            (
                self.current_term,
                self.voted_for,
                list(self.log.entries),
                self.log.last_included_index,
                self.log.last_included_term,
            )
        )

    def _persist(self) -> None:
        logger.debug(
            "peer %d persist: term=%d voted_for=%d log=%d",
            self.me, self.current_term, self.voted_for, len(self.log),
        )
        self.persister.save_raft_state(self._encode_state())

    def _read_persist(self, data: bytes) -> None:
        if not data:
            return
        term, voted_for, entries, last_index, last_term = pickle.loads(data)
        with self._lock:
            self.current_term = term
            self.voted_for = voted_for
            self.log = RaftLog(list(entries), last_index, last_term)

    def _step_down(self, term: int) -> None:
        self.role = Role.FOLLOWER
        self.leader_id = -1
        self.current_term = term
        self.voted_for = -1

    # -------------------------------------------------------------- handlers

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        """Handle a RequestVote RPC."""
        with self._lock:
            reply = RequestVoteReply(term=self.current_term, vote_granted=False)
            if args.term < self.current_term:
                return reply
            if args.term > self.current_term:
                self._step_down(args.term)
            if self.voted_for in (-1, args.candidate_id):
                last_term = self.log.last_term()
                if args.last_log_term > last_term or (
                    args.last_log_term == last_term
                    and args.last_log_index >= self.log.last_index()
                ):
                    self.voted_for = args.candidate_id
                    reply.vote_granted = True
                    self.last_active_time = time.monotonic()
            self._persist()
            logger.debug(
                "peer %d vote for %d in term %d: %s",
                self.me, args.candidate_id, args.term, reply.vote_granted,
            )
            return reply

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        """Handle an AppendEntries RPC."""
        with self._lock:
            reply = AppendEntriesReply(term=self.current_term)
            if args.term < self.current_term:
                return reply
            if args.term > self.current_term:
                self._step_down(args.term)
                self._persist()

            self.leader_id = args.leader_id
            self.last_active_time = time.monotonic()

            log = self.log
            if args.prev_log_index < log.last_included_index:
                reply.conflict_index = 1
                return reply
            if args.prev_log_index == log.last_included_index:
                if args.prev_log_term != log.last_included_term:
                    reply.conflict_index = 1
                    return reply
            else:
                if args.prev_log_index > log.last_index():
                    reply.conflict_index = log.last_index() + 1
                    return reply
                local_term = log.entry(args.prev_log_index).term
                if local_term != args.prev_log_term:
                    reply.conflict_term = local_term
                    first = log.first_index_of_term(local_term, args.prev_log_index)
                    if first is not None:
                        reply.conflict_index = first
                    return reply

            for offset, entry in enumerate(args.entries):
                index = args.prev_log_index + 1 + offset
                if index > log.last_index():
                    log.append(entry)
                elif log.entry(index).term != entry.term:
                    log.truncate_from(index)
                    log.append(entry)
            self._persist()

            if args.leader_commit > self.commit_index:
                self.commit_index = min(args.leader_commit, log.last_index())
            reply.success = True
            return reply

    def install_snapshot(self, args: InstallSnapshotArgs) -> InstallSnapshotReply:
        """Handle an InstallSnapshot RPC."""
        with self._lock:
            reply = InstallSnapshotReply(term=self.current_term)
            if args.term < self.current_term:
                return reply
            if args.term > self.current_term:
                self._step_down(args.term)
                self._persist()

            self.leader_id = args.leader_id
            self.last_active_time = time.monotonic()

            if not self.log.install_snapshot(args.last_included_index, args.last_included_term):
                return reply
            self.persister.save_state_and_snapshot(self._encode_state(), args.data)
            self._install_snapshot_to_application()
            logger.debug(
                "peer %d installed snapshot up to %d", self.me, args.last_included_index
            )
            return reply

    # ---------------------------------------------------------- service API

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Begin agreement on ``command``.

        Returns the index it will occupy if committed, the current term and
        whether this peer is the leader; ``(-1, -1, False)`` if it is not.
        """
        with self._lock:
            if self.role is not Role.LEADER:
                return -1, -1, False
            index = self.log.append(LogEntry(command=command, term=self.current_term))
            self._persist()
            logger.debug("peer %d add command at %d term %d", self.me, index, self.current_term)
            return index, self.current_term, True

    def kill(self) -> None:
        """Stop the background loops of this peer."""
        self._dead.set()

    def killed(self) -> bool:
        return self._dead.is_set()

    def exceed_log_size(self, log_size: int) -> bool:
        """Tell whether the persisted Raft state has reached ``log_size`` bytes."""
        with self._lock:
            return self.persister.raft_state_size() >= log_size

    def take_snapshot(self, snapshot: bytes, last_included_index: int) -> None:
        """Save a service snapshot and discard the log entries it covers."""
        with self._lock:
            if not self.log.compact(last_included_index):
                return
            self.persister.save_state_and_snapshot(self._encode_state(), snapshot)
            logger.debug(
                "peer %d took snapshot up to %d (term %d)",
                self.me, self.log.last_included_index, self.log.last_included_term,
            )

    def _install_snapshot_to_application(self) -> None:
        msg = ApplyMsg(
            command_valid=False,
            snapshot=self.persister.read_snapshot(),
            last_included_index=self.log.last_included_index,
            last_included_term=self.log.last_included_term,
        )
        self.last_applied = self.log.last_included_index
        self.apply_queue.put(msg)

    # ----------------------------------------------------------- background

    def _launch(self) -> None:
        for target, name in (
            (self._election_loop, "election"),
            (self._append_entries_loop, "replication"),
            (self._apply_log_loop, "apply"),
        ):
            threading.Thread(target=target, name=f"raft-{self.me}-{name}", daemon=True).start()

    def _call(self, peer_id: int, method: str, args: Any) -> Any | None:
        return self.peers[peer_id].call(method, args)

    def _election_loop(self) -> None:
        while not self.killed():
            time.sleep(_TICK)
            self._election_tick()

    def _election_tick(self) -> None:
        with self._lock:
            now = time.monotonic()
            timeout = (_ELECTION_TIMEOUT_MS + random.randrange(_ELECTION_TIMEOUT_SPREAD_MS)) / 1000
            elapsed = now - self.last_active_time
            if self.role is Role.FOLLOWER and elapsed >= timeout:
                self.role = Role.CANDIDATE
                logger.debug("peer %d follower -> candidate", self.me)
            if not (self.role is Role.CANDIDATE and elapsed >= timeout):
                return
            self.last_active_time = now
            self.current_term += 1
            self.voted_for = self.me
            self._persist()
            args = RequestVoteArgs(
                term=self.current_term,
                candidate_id=self.me,
                last_log_index=self.log.last_index(),
                last_log_term=self.log.last_term(),
            )

        vote_count, max_term = self._collect_votes(args)

        with self._lock:
            if self.role is not Role.CANDIDATE:
                return
            if max_term > self.current_term:
                self._step_down(max_term)
                self._persist()
                return
            if vote_count > len(self.peers) // 2:
                self.role = Role.LEADER
                self.leader_id = self.me
                self.next_index = [self.log.last_index() + 1] * len(self.peers)
                self.match_index = [0] * len(self.peers)
                self.last_broadcast_time = float("-inf")
                logger.debug("peer %d became leader in term %d", self.me, self.current_term)

    def _collect_votes(self, args: RequestVoteArgs) -> tuple[int, int]:
        """Ask every peer for a vote; stop once a majority or everyone answered."""
        total = len(self.peers)
        results: queue.Queue[RequestVoteReply | None] = queue.Queue()
        for peer_id in range(total):
            if peer_id == self.me:
                continue
            threading.Thread(
                target=lambda pid=peer_id: results.put(self._call(pid, "Raft.RequestVote", args)),
                daemon=True,
            ).start()

        vote_count = finish_count = 1
        max_term = 0
        while finish_count < total and vote_count <= total // 2:
            reply = results.get()
            finish_count += 1
            if reply is not None:
                if reply.vote_granted:
                    vote_count += 1
                max_term = max(max_term, reply.term)
        return vote_count, max_term

    def _append_entries_loop(self) -> None:
        while not self.killed():
            time.sleep(_TICK)
            self._heartbeat_tick()

    def _heartbeat_tick(self) -> None:
        with self._lock:
            if self.role is not Role.LEADER:
                return
            now = time.monotonic()
            if now - self.last_broadcast_time < _HEARTBEAT_INTERVAL:
                return
            self.last_broadcast_time = now
            for peer_id in range(len(self.peers)):
                if peer_id == self.me:
                    continue
                if self.next_index[peer_id] <= self.log.last_included_index:
                    self._do_install_snapshot(peer_id)
                else:
                    self._do_append_entries(peer_id)

    def _do_append_entries(self, peer_id: int) -> None:
        prev_index = self.next_index[peer_id] - 1
        args = AppendEntriesArgs(
            term=self.current_term,
            leader_id=self.me,
            prev_log_index=prev_index,
            prev_log_term=self.log.term_at(prev_index),
            entries=self.log.entries_from(prev_index + 1),
            leader_commit=self.commit_index,
        )
        threading.Thread(
            target=self._send_append_entries, args=(peer_id, args), daemon=True
        ).start()

    def _send_append_entries(self, peer_id: int, args: AppendEntriesArgs) -> None:
        reply = self._call(peer_id, "Raft.AppendEntries", args)
        if reply is None:
            return
        with self._lock:
            if self.current_term != args.term:
                return
            if reply.term > self.current_term:
                self._step_down(reply.term)
                self._persist()
                return
            if reply.success:
                self.next_index[peer_id] = args.prev_log_index + len(args.entries) + 1
                self.match_index[peer_id] = self.next_index[peer_id] - 1
                self._update_commit_index()
                return
            if reply.conflict_term != -1:
                found = self.log.last_index_of_term(reply.conflict_term, args.prev_log_index)
                next_index = found if found is not None else reply.conflict_index
            else:
                next_index = reply.conflict_index
            self.next_index[peer_id] = max(1, next_index)
            logger.debug("peer %d back off peer %d to %d", self.me, peer_id, self.next_index[peer_id])

    def _do_install_snapshot(self, peer_id: int) -> None:
        args = InstallSnapshotArgs(
            term=self.current_term,
            leader_id=self.me,
            last_included_index=self.log.last_included_index,
            last_included_term=self.log.last_included_term,
            offset=0,
            data=self.persister.read_snapshot(),
            done=True,
        )
        threading.Thread(
            target=self._send_install_snapshot, args=(peer_id, args), daemon=True
        ).start()

    def _send_install_snapshot(self, peer_id: int, args: InstallSnapshotArgs) -> None:
        reply = self._call(peer_id, "Raft.InstallSnapshot", args)
        if reply is None:
            return
        with self._lock:
            if self.current_term != args.term:
                return
            if reply.term > self.current_term:
                self._step_down(reply.term)
                self._persist()
                return
            self.next_index[peer_id] = self.log.last_index() + 1
            self.match_index[peer_id] = args.last_included_index
            self._update_commit_index()

    def _update_commit_index(self) -> None:
        matches = sorted(
            [self.log.last_index()]
            + [m for peer_id, m in enumerate(self.match_index) if peer_id != self.me]
        )
        candidate = matches[(len(self.peers) - 1) // 2]
        if candidate > self.commit_index and (
            candidate <= self.log.last_included_index
            or self.log.entry(candidate).term == self.current_term
        ):
            self.commit_index = candidate
        logger.debug("peer %d commit index %d match %s", self.me, self.commit_index, matches)

    def _apply_log_loop(self) -> None:
        idle = False
        while not self.killed():
            if idle:
                time.sleep(_TICK)
            with self._lock:
                idle = True
                if self.commit_index > self.last_applied:
                    self.last_applied += 1
                    entry = self.log.entry(self.last_applied)
                    self.apply_queue.put(
                        ApplyMsg(
                            command_valid=True,
                            command=entry.command,
                            command_index=self.last_applied,
                            command_term=entry.term,
                        )
                    )
                    idle = False


def make(
    peers: Sequence[_Peer], me: int, persister: Persister, apply_queue: _ApplyQueue
) -> Raft:
    """Create a Raft peer, restore its persisted state and start it running."""
    raft = Raft(peers, me, persister, apply_queue)
    raft._launch()
    return raft