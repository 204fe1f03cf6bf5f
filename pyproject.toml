[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "serialflasher"
version = "0.1.0"
description = "Host-side library for flashing firmware into and loading code onto ESP chips through their ROM bootloader"
requires-python = ">=3.10"
dependencies = [
    "pyserial",
]
keywords = ["esp32", "esp8266", "bootloader", "flasher", "slip", "spi", "firmware", "serial"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["serialflasher"]

[tool.pytest.ini_options]
addopts = "-ra"
