[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "platinum"
version = "0.1.0"
description = "A small event-driven HTTP server serving static files and forwarding dynamic requests to a FastCGI peer"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["http", "web server", "fastcgi", "event loop", "static files"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
platinum = "platinum.server:main"

[tool.hatch.build.targets.wheel]
packages = ["platinum"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
