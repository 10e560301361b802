[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "monsoonkv"
version = "0.1.0"
description = "Fibers, an N:M scheduler, timers, a readiness-based IO manager and a skip-list store for building a Raft key-value service"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "fiber",
    "coroutine",
    "scheduler",
    "timer",
    "io-manager",
    "skip-list",
    "raft",
    "key-value",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
monsoonkv-echo = "monsoonkv.echo_server:main"

[tool.hatch.build.targets.wheel]
packages = ["monsoonkv"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
