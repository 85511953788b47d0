#!/usr/bin/env python3
"""
Setup configuration for playlist-archiver
Keeps an append-only local archive of SoundCloud and YouTube playlists
"""

from setuptools import setup, find_packages

# Core requirements (always installed)
core_requirements = [
    "yt-dlp>=2023.12.30",
    "mutagen>=1.47.0",
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "rich>=13.0.0",
    "pyyaml>=6.0.1",
    "tqdm>=4.66.1",
    "python-dotenv>=1.0.0",
    "Pillow>=10.0.0",
]

setup(
    name="playlist-archiver",
    version="1.0.0",
    author="playlist-archiver contributors",
    description="Archive remote playlists locally and keep them in sync without ever deleting audio",
    long_description=(
        "playlist-archiver mirrors SoundCloud and YouTube playlists into a "
        "deduplicated local audio archive, records tracks that disappear or "
        "become restricted upstream, and writes one .m3u playlist per source."
    ),
    long_description_content_type="text/plain",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
        "Topic :: System :: Archiving :: Mirroring",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.3",
        ],
    },
    entry_points={
        "console_scripts": [
            "plarchive=playlist_archiver.cli:main",
        ],
    },
    keywords="soundcloud youtube music playlist archive mpd m3u cli",
)
