import pickle

import pytest

from raftkv.messages import (
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


def test_role_values_match_names():
    assert Role("Leader") is Role.LEADER
    assert Role("Follower") is Role.FOLLOWER
    assert Role("Candidates") is Role.CANDIDATE


def test_role_unknown_value_raises():
    with pytest.raises(ValueError):
        Role("Observer")


def test_append_entries_reply_defaults_have_no_conflict():
    reply = AppendEntriesReply()
    assert reply.success is False
    assert reply.conflict_index == -1
    assert reply.conflict_term == -1


def test_request_vote_reply_default_not_granted():
    assert RequestVoteReply().vote_granted is False


def test_append_entries_args_entries_not_shared():
    a = AppendEntriesArgs(term=1, leader_id=0, prev_log_index=0, prev_log_term=0)
    b = AppendEntriesArgs(term=1, leader_id=0, prev_log_index=0, prev_log_term=0)
    a.entries.append(LogEntry("x", 1))
    assert b.entries == []


def test_apply_msg_snapshot_form():
    msg = ApplyMsg(command_valid=False, snapshot=b"snap",
                   last_included_index=5, last_included_term=2)
    assert msg.command is None
    assert msg.snapshot == b"snap"
    assert msg.last_included_index == 5


def test_install_snapshot_args_defaults_single_chunk():
    args = InstallSnapshotArgs(term=3, leader_id=1,
                               last_included_index=4, last_included_term=2)
    assert args.offset == 0
    assert args.done is True
    assert args.data == b""


@pytest.mark.parametrize(
    "message",
    [
        LogEntry({"k": "v"}, 3),
        ApplyMsg(True, command=7, command_index=2, command_term=1),
        RequestVoteArgs(2, 1, 5, 2),
        RequestVoteReply(2, True),
        AppendEntriesArgs(2, 0, 3, 1, [LogEntry(1, 1), LogEntry(2, 2)], 3),
        AppendEntriesReply(2, False, 4, 1),
        InstallSnapshotArgs(2, 0, 10, 2, data=b"abc"),
        InstallSnapshotReply(9),
    ],
)
def test_messages_survive_pickling(message):
    assert pickle.loads(pickle.dumps(message)) == message