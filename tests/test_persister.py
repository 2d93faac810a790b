import threading

from raftkv.persister import Persister


def test_fresh_persister_is_empty():
    ps = Persister()
    assert ps.read_raft_state() == b""
    assert ps.read_snapshot() == b""
    assert ps.raft_state_size() == 0
    assert ps.snapshot_size() == 0


def test_save_and_read_raft_state():
    ps = Persister()
    state = b"some raft state"
    ps.save_raft_state(state)
    assert ps.read_raft_state() == state
    assert ps.raft_state_size() == len(state)
    assert ps.read_snapshot() == b""


def test_save_state_and_snapshot_together():
    ps = Persister()
    state, snap = b"state-bytes", b"snapshot-bytes-longer"
    ps.save_state_and_snapshot(state, snap)
    assert ps.read_raft_state() == state
    assert ps.read_snapshot() == snap
    assert ps.raft_state_size() == len(state)
    assert ps.snapshot_size() == len(snap)


def test_save_raft_state_keeps_snapshot():
    ps = Persister()
    ps.save_state_and_snapshot(b"a", b"snap")
    ps.save_raft_state(b"bb")
    assert ps.read_snapshot() == b"snap"
    assert ps.read_raft_state() == b"bb"


def test_copy_is_independent():
    ps = Persister()
    ps.save_state_and_snapshot(b"old", b"oldsnap")
    cp = ps.copy()
    assert cp.read_raft_state() == b"old"
    assert cp.read_snapshot() == b"oldsnap"
    ps.save_state_and_snapshot(b"new", b"newsnap")
    assert cp.read_raft_state() == b"old"
    assert cp.read_snapshot() == b"oldsnap"
    cp.save_raft_state(b"changed")
    assert ps.read_raft_state() == b"new"


def test_bytearray_input_is_frozen():
    ps = Persister()
    buf = bytearray(b"abc")
    ps.save_raft_state(buf)
    buf[0] = ord("z")
    assert ps.read_raft_state() == b"abc"


def test_concurrent_writes_leave_consistent_state():
    ps = Persister()
    values = [bytes([i]) * (i + 1) for i in range(20)]

    def writer(v):
        ps.save_state_and_snapshot(v, v)

    threads = [threading.Thread(target=writer, args=(v,)) for v in values]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert ps.read_raft_state() in values
    assert ps.read_raft_state() == ps.read_snapshot()