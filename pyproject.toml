[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bearpe"
version = "0.6.0"
description = "Inspect Portable Executable structures: section table, address mapping, security and TLS directories, ordinal lookups"
requires-python = ">=3.10"
dependencies = []
keywords = ["pe", "portable-executable", "parser", "sections", "tls", "reverse-engineering"]
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
    "Topic :: Software Development :: Disassemblers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bearpe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
