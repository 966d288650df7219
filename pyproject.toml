[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "migrashard"
version = "0.1.0"
description = "Sharded blockchain emulator core: account migration, cross-shard bank loans, transaction pools and graph partitioning."
requires-python = ">=3.10"
keywords = ["blockchain", "sharding", "account migration", "graph partitioning", "emulator"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["migrashard"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
