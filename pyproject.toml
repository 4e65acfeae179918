[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tokenstate"
version = "0.0.1"
description = "Key-value state layout, JSON-RPC server and client for a token ledger"
requires-python = ">=3.10"
dependencies = []
keywords = ["ledger", "token", "state", "json-rpc", "key-value", "bech32", "base58"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tokenstate"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
