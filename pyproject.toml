[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "p2pshares"
version = "0.1.0"
description = "Share chain data types, ckpool message parsing and bitcoin block building for a peer-to-peer mining pool"
requires-python = ">=3.10"
keywords = ["bitcoin", "mining", "p2pool", "ckpool", "share-chain", "stratum", "zeromq"]
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
    "Topic :: System :: Distributed Computing",
    "Typing :: Typed",
]
dependencies = [
    "cbor2",
    "pyzmq",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["p2pshares"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
