[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "canutils"
version = "0.1.0"
description = "CAN bus tools: bit timing calculation, a broadcast manager socket server and a full-duplex frame test"
requires-python = ">=3.10"
dependencies = []
keywords = ["can", "canfd", "socketcan", "bit-timing", "bcm", "automotive", "embedded"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
can-calc-bit-timing = "canutils.calc_cli:main"
bcmserver = "canutils.bcmserver:main"
canfdtest = "canutils.canfdtest:main"

[tool.hatch.build.targets.wheel]
packages = ["canutils"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
