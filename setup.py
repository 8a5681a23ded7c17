"""
AudioJournal: setuptools build script.

Usage:
    # Development install:
    pip install -e .[test]

    # Run the test suite:
    python -m unittest discover tests
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "audio-journal"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Audio chunking, transcript reassembly and multi-engine summarization",
    packages=find_namespace_packages(include=["audio_journal", "audio_journal.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "audio-journal=main:main",
        ],
    },
)
