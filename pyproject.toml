[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "alephbft"
version = "0.1.0"
description = "Building blocks of an asynchronous Byzantine fault tolerant consensus protocol: units, signatures, reliable multicast and DAG assembly"
requires-python = ">=3.10"
dependencies = []
keywords = ["consensus", "bft", "byzantine", "dag", "multisignature", "reliable-broadcast"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["alephbft"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
