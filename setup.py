#!/usr/bin/env python
# -*- coding: utf-8 -*-

import re
from setuptools import setup, find_packages


def read(filename):
    with open(filename, "r", encoding="utf-8") as f:
        return f.read()


def get_version():
    version_file = read("rpa_agent/__init__.py")
    version_match = re.search(r"""^__version__ = ["']([^"']*)["']""", version_file, re.M)
    if version_match:
        return version_match.group(1)
    raise RuntimeError("Unable to find version string.")


setup(
    name="rpa-agent",
    version=get_version(),
    description="Browser automation agent: typed steps over Playwright, served via MCP, WebSocket and scripts",
    long_description=read("README.md"),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["rpa_agent", "rpa_agent.*"]),
    include_package_data=True,
    install_requires=[
        "playwright>=1.40",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "pyyaml>=6.0",
        "rich>=13.0.0",
        "mcp>=1.10.0,<2",
        "aiofiles>=23.0",
        "aiohttp>=3.9",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio>=0.24",
            "pytest-cov",
        ],
        "dev": [
            "pytest",
            "pytest-asyncio>=0.24",
            "pytest-cov",
            "ruff",
            "mypy",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "rpa-agent=rpa_agent.cli.main:main",
        ],
    },
    keywords=[
        "rpa",
        "browser",
        "automation",
        "playwright",
        "mcp",
        "accessibility",
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Testing",
        "Topic :: Internet :: WWW/HTTP :: Browsers",
    ],
)
