[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "iopfs"
version = "0.1.0"
description = "An I/O manager with pluggable device drivers and an HDLoader game filesystem driver"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "hdloader", "hdl", "disk-image", "io-manager", "partition"]
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
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["iopfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
