[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lsmkv"
version = "0.1.0"
description = "A small log-structured merge-tree key-value store with a write-ahead log, checkpoints and leveled compaction"
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "lsm-tree", "write-ahead-log", "storage", "database", "compaction"]
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
lsmkv = "lsmkv.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["lsmkv"]

[tool.pytest.ini_options]
addopts = "-ra"
