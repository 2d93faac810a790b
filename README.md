# raftkv

A Raft replicated log that compacts its log with snapshots. The package also
has the client side of a shard master service and of a sharded key/value
service.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `raftkv.persister`: `Persister` stores a peer's serialised Raft state and
  its latest snapshot. `save_state_and_snapshot` saves both in one atomic
  step. `copy` returns a new persister with the same contents.
- `raftkv.messages`: the peer `Role`, `LogEntry`, `ApplyMsg`, and the
  argument and reply dataclasses for the `RequestVote`, `AppendEntries` and
  `InstallSnapshot` RPCs.
- `raftkv.raftlog`: `RaftLog`, the in-memory log. It is addressed by absolute
  1-based Raft index and keeps only the entries after the snapshot point.
- `raftkv.raft`: the `Raft` peer and `make(peers, me, persister, apply_queue)`,
  which restores a peer from the persister and starts its election,
  replication and apply threads.
- `raftkv.shardmaster`: `NSHARDS`, `Config`, the RPC dataclasses, `nrand`, and
  a `Clerk` with `query`, `join`, `leave` and `move`.
- `raftkv.shardkv`: `key2shard`, the `Err` codes, the RPC dataclasses, and a
  `Clerk` with `get`, `put`, `append` and `put_append`.

## Using a Raft peer

```python
import queue
from raftkv.persister import Persister
from raftkv.raft import make

applied = queue.Queue()
rf = make(peers, 0, Persister(), applied)

term, is_leader = rf.get_state()
if is_leader:
    index, term, ok = rf.start("some command")

msg = applied.get()   # an ApplyMsg
rf.kill()
```

`peers` is a list of client ends, one per peer, in the same order on every
peer. The entry at position `me` is this peer itself. Each end must provide
`call(method_name, args)`, which returns the reply or `None` when the RPC was
lost. The method names are `"Raft.RequestVote"`, `"Raft.AppendEntries"` and
`"Raft.InstallSnapshot"`. They map to the peer's `request_vote`,
`append_entries` and `install_snapshot` handlers.

Messages on `apply_queue`:

- With `command_valid` true, an `ApplyMsg` carries a committed command, its
  index and its term.
- With `command_valid` false, it carries a snapshot together with
  `last_included_index` and `last_included_term`. A peer sends one such
  message when it is created and another each time it installs a snapshot
  from a leader.

`start` returns `(-1, -1, False)` on a peer that is not the leader.

The application compacts the log itself:

1. It checks `rf.exceed_log_size(limit)` to see whether the persisted state
   has reached `limit` bytes.
2. If so, it passes its snapshot to
   `rf.take_snapshot(data, last_included_index)`.
3. Raft then drops the log entries the snapshot covers.

Raft state is serialised with `pickle`, so only load persisted data from a
source you trust.

## Clerks

`shardmaster.Clerk(servers)` and `shardkv.Clerk(masters, make_end)` take
client ends with the same `call` interface.

- The shard master clerk tries each server in turn. It retries until one
  replies without `wrong_leader`.
- The key/value clerk starts from configuration 0. When no server of the
  owning group can serve a request, it queries the shard master for the
  latest configuration and tries again.
- `make_end(name)` turns a server name from `Config.groups` into a client end.

Both clerks retry forever. The pause between rounds is set by
`retry_interval` (0.1 seconds by default).

## What this package does not do

The package does not include:

- a shard master server;
- a sharded key/value server;
- a network or RPC transport.

The clerks only send requests. The caller supplies the client ends that
deliver them to servers.