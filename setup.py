"""
Setup configuration for i3mux.

Binds i3/Sway workspaces to local or remote terminal multiplexer sessions.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read long description from README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="i3mux",
    version="0.4.0",
    description="Bind i3/Sway workspaces to local or remote abduco sessions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="i3mux contributors",
    author_email="",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "i3ipc>=2.2.1",
        "pydantic>=2.0",
        "rich>=13.0",
    ],
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "i3mux=i3mux.cli.commands:cli_main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
        ],
    },
)
