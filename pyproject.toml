[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mdnslite"
version = "0.1.0"
description = "A small multicast DNS (mDNS) responder and service discovery client"
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["mdns", "dns-sd", "zeroconf", "service discovery", "multicast dns"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mdnslite"]

[tool.pytest.ini_options]
addopts = "-ra"
