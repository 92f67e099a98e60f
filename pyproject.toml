[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "proccie"
version = "0.1.0"
description = "A process manager that runs the processes described in a TOML file, with dependency ordering, readiness checks, retries and graceful shutdown."
requires-python = ">=3.11"
keywords = ["process manager", "procfile", "toml", "supervisor", "development"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
proccie = "proccie.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["proccie"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
