[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "monsoonkv"
version = "0.1.0"
description = "Fibers, a thread-pool scheduler, timers, an I/O event manager, a skip-list store and key-value helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["fiber", "coroutine", "scheduler", "selectors", "timer", "skiplist", "key-value"]
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
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
monsoonkv-echo = "monsoonkv.server:main"

[tool.hatch.build.targets.wheel]
packages = ["monsoonkv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
