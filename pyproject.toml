[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lc3pipe"
version = "0.1.0"
description = "A five-stage pipelined LC-3 virtual machine with hazard handling and a per-cycle pipeline table"
requires-python = ">=3.10"
dependencies = []
keywords = ["lc-3", "emulator", "virtual machine", "pipeline", "cpu", "simulator"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lc3pipe = "lc3pipe.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["lc3pipe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
