[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "havendns"
version = "0.1.0"
description = "A forwarding DNS server that answers from a local record table and races upstream UDP and DNS-over-HTTPS resolvers"
requires-python = ">=3.11"
keywords = ["dns", "resolver", "dns-over-https", "doh", "forwarder", "postgres"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "dnspython>=2.4",
    "httpx>=0.25",
    "redis>=5.0",
    "sqlalchemy>=2.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
havendns = "havendns.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["havendns"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
ignore_missing_imports = true
