[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raintorrent"
version = "0.1.0"
description = "Building blocks of a BitTorrent client: peer wire protocol, piece picking, caching, storage and resume data."
requires-python = ">=3.10"
keywords = ["bittorrent", "torrent", "p2p", "peer-to-peer", "pex", "webseed", "bencode"]
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
    "Topic :: Communications :: File Sharing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["raintorrent"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
