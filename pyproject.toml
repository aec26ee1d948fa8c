[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "qmpctl"
version = "0.1.0"
description = "Command-line controller for QEMU virtual machines over the QEMU Machine Protocol (QMP)"
requires-python = ">=3.10"
keywords = ["qemu", "qmp", "virtual-machine", "keyboard", "screenshot", "usb"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
qmp = "qmpctl.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["qmpctl"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
