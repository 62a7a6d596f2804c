[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "brokkr"
version = "1.3.10"
description = "Firmware package tooling: tar scanning, LZ4 frame streaming and MD5 trailer verification"
requires-python = ">=3.10"
dependencies = [
    "lz4",
]
keywords = ["tar", "lz4", "md5", "firmware", "archive"]
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
    "Topic :: System :: Archiving",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["brokkr"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
