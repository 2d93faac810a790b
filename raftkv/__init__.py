"""Raft consensus with snapshots, plus client clerks for a shard master and a sharded key/value service."""

__version__ = "0.1.0"

__all__ = ["persister", "messages", "raftlog", "raft", "shardmaster", "shardkv"]