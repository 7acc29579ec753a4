[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minikv"
version = "0.1.0"
description = "A small in-memory key-value server that speaks the RESP protocol, with lists, streams, transactions, pub/sub and replication"
requires-python = ">=3.10"
dependencies = []
keywords = ["resp", "key-value", "database", "server", "replication", "streams", "pubsub"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
minikv = "minikv.server:main"

[tool.hatch.build.targets.wheel]
packages = ["minikv"]

[tool.pytest.ini_options]
addopts = "-ra"
