[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "miaospeed"
version = "4.3.2"
description = "Building blocks for a proxy node testing backend: latency, NAT type, download speed, request signing and task scheduling"
requires-python = ">=3.10"
keywords = ["proxy", "speedtest", "latency", "nat", "stun", "geoip", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: Internet",
]
dependencies = [
    "dnspython",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
miaospeed = "miaospeed.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["miaospeed"]

[tool.hatch.build.targets.sdist]
include = ["miaospeed", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
