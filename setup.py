"""Realtime flight-simulator instrument client.

Packaging for pip install. Runtime and test dependencies are declared here.

License: MIT
"""

from pathlib import Path

from setuptools import find_packages, setup

setup(
    name="simlink",
    packages=find_packages(include=["simlink"]),
    version="0.1.0",
    description="Realtime WebSocket client for flight-simulator instrument servers",
    long_description=Path("README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    license="MIT",
    python_requires=">=3.12",
    install_requires=[
        "websockets>=13.0",
        "orjson>=3.10",
        "pydantic>=2.10.0",
        "pydantic-settings>=2.6.0",
        "structlog>=25.5.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.24",
            "hypothesis>=6.100",
        ],
    },
    entry_points={
        "console_scripts": ["simlink=simlink.__main__:main"],
    },
    setup_requires=[],
    test_suite="tests",
)
