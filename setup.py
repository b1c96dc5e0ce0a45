"""Package setup for the SERP refresh engine."""

from setuptools import setup, find_namespace_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [
        line.strip()
        for line in fh
        if line.strip() and not line.startswith("#")
    ]

# Separate test dependencies
test_requirements = [
    "pytest>=8.0.0,<9.0",
    "pytest-asyncio>=0.23.0,<1.0",
    "pytest-cov>=4.1.0,<6.0",
]

setup(
    name="serp-refresh-engine",
    version="1.0.0",
    author="SERP Tracking Team",
    author_email="serp-tracking@example.com",
    description=(
        "Keyword position refresh engine: scrapes Google rankings through "
        "pluggable scraping backends, with retry queue and cron worker."
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["src", "src.*"]),
    python_requires=">=3.10",
    install_requires=[r for r in requirements if "pytest" not in r],
    extras_require={
        "test": test_requirements,
        "dev": test_requirements + [
            "black",
            "flake8",
            "isort",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "serp=src.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "": ["*.yaml", "*.yml", "*.json"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Information Technology",
        "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
        "Topic :: Internet :: WWW/HTTP :: Site Management",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Framework :: Pytest",
        "Typing :: Typed",
    ],
    keywords=[
        "seo", "serp", "rank-tracking", "keyword-position", "scraping",
        "google", "map-pack", "cron",
    ],
)
