"""
SubChunker — setuptools build script.

Usage:
    # Development install:
    pip install -e .[test]

    # Run the command-line tool:
    python3 main.py translate episode.srt --target English
"""

from setuptools import setup

APP_NAME = "subchunker"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Chunked subtitle translation and transcription with generative models",
    packages=[
        "subchunker",
        "subchunker.core",
    ],
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "subchunker=main:main",
        ],
    },
)
