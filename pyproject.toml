[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bootdao"
version = "0.1.0"
description = "A small data access layer: map plain dataclass entities to SQLite or MySQL tables without code generation."
requires-python = ">=3.10"
keywords = ["orm", "database", "dao", "data access", "sqlite", "mysql"]
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
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "pymysql",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["bootdao"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
