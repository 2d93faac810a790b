[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raftkv"
version = "0.1.0"
description = "Raft consensus with snapshots, plus client clerks for a shard master and a sharded key/value service"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "replication", "sharding", "key-value", "distributed"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["raftkv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
