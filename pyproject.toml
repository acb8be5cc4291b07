[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flexpool"
version = "0.1.0"
description = "Object-pool allocator building blocks: a bitmap freelist, a Robin Hood hash table and a UNIX-socket message protocol with daemon and client"
requires-python = ">=3.10"
dependencies = []
keywords = ["freelist", "bitmap", "hash table", "robin hood hashing", "unix socket", "daemon", "allocator"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[tool.hatch.build.targets.wheel]
packages = ["flexpool"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
