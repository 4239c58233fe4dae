[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "treehole"
version = "2.1.0"
description = "Core models and services for an anonymous bulletin board: holes, floors, tags, favorites, subscriptions and notifications, stored in SQLite."
requires-python = ">=3.10"
dependencies = []
keywords = ["bbs", "forum", "anonymous", "bulletin-board", "moderation", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: BBS",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["treehole"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
