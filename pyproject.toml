[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nixcpio"
version = "0.3.3"
description = "Dump a Nix store closure as a stream of cached, zstd-compressed CPIO archives"
requires-python = ">=3.10"
dependencies = [
    "zstandard",
]
keywords = ["nix", "cpio", "initrd", "netboot", "zstd", "closure"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Packaging",
    "Topic :: System :: Boot",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
nixcpio = "nixcpio.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["nixcpio"]

[tool.pytest.ini_options]
addopts = "-ra"
