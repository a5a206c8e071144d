[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hypergcode"
version = "0.1.0"
description = "Command types, printer configuration, messaging protocol and firmware state model for valve-array HyperGCode-4D printers"
requires-python = ">=3.11"
dependencies = [
    "tomli-w",
]
keywords = [
    "3d-printing",
    "gcode",
    "valve-array",
    "firmware",
    "printer",
    "protocol",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Printing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["hypergcode"]

[tool.hatch.build.targets.sdist]
include = [
    "hypergcode",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
