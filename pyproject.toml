[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "replayfs"
version = "0.1.4"
description = "Filesystem watcher that records changes to a log and replays directory state from it"
requires-python = ">=3.11"
dependencies = [
    "watchdog",
]
keywords = ["filesystem", "watcher", "replay", "snapshot", "daemon", "ndjson"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
replayfs = "replayfs.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["replayfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
