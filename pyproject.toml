[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "airdap"
version = "0.1.0"
description = "Building blocks for a wireless CMSIS-DAP debug probe: a KCP reliable transport and a DAP packet handler"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "cmsis-dap",
    "debug-probe",
    "kcp",
    "arq",
    "reliable-udp",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["airdap"]

[tool.pytest.ini_options]
addopts = "-ra"
