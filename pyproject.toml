[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "iso14229"
version = "0.7.0"
description = "UDS (ISO 14229) definitions and ISO-TP (ISO 15765-2) transports for CAN"
requires-python = ">=3.10"
dependencies = []
keywords = ["uds", "iso14229", "isotp", "iso15765", "can", "socketcan", "diagnostics", "automotive"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN)",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["iso14229"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
