[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "reportdb"
version = "0.1.0"
description = "A small time-series datastore for polled network metrics, with block-based partitioned storage, aggregation queries and a ZeroMQ front end."
requires-python = ">=3.10"
keywords = ["time-series", "datastore", "metrics", "monitoring", "zeromq", "msgpack"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "msgpack",
    "pyzmq",
    "cachetools",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
reportdb = "reportdb.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["reportdb"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
