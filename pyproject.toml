[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "anylink"
version = "0.1.0"
description = "Building blocks for an SSL VPN server compatible with AnyConnect and OpenConnect clients"
requires-python = ">=3.10"
dependencies = [
    "bcrypt",
]
keywords = [
    "vpn",
    "ssl-vpn",
    "anyconnect",
    "openconnect",
    "cstp",
    "dtls",
    "arp",
    "networking",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["anylink"]

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
