[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "replkv"
version = "0.1.0"
description = "A replicated key-value store: commands agreed through a consensus log and served over HTTP"
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "replication", "consensus", "state-machine", "http"]
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
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["replkv"]

[tool.pytest.ini_options]
addopts = "-ra"
