#!/usr/bin/env python3
"""
Setup script for sharedmailbox.

Install with `pip install .` or, for development, `pip install -e '.[dev]'`.
"""

import sys

if sys.version_info < (3, 11):
    sys.exit("Error: sharedmailbox requires Python 3.11 or higher.")

try:
    from setuptools import find_packages, setup
except ImportError:
    sys.exit("Error: setuptools is required. Install it with: pip install setuptools")

# Read version from __version__.py for consistency
try:
    import re
    from pathlib import Path

    version_file = Path(__file__).parent / "src" / "sharedmailbox" / "__version__.py"
    version_content = version_file.read_text(encoding="utf-8")
    version_match = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', version_content, re.M)
    version = version_match.group(1) if version_match else "0.1.0"
except Exception:
    version = "0.1.0"

# Read long description from README if available
try:
    from pathlib import Path

    readme_path = Path(__file__).parent / "README.md"
    if readme_path.exists():
        long_description = readme_path.read_text(encoding="utf-8")
        long_description_content_type = "text/markdown"
    else:
        long_description = "Shared mailbox coordination for concurrent end-to-end test runs"
        long_description_content_type = "text/plain"
except Exception:
    long_description = "Shared mailbox coordination for concurrent end-to-end test runs"
    long_description_content_type = "text/plain"

# Core dependencies
install_requires = [
    "boto3>=1.35.16",
    "requests>=2.31.0",
    "pydantic>=2.5.0",
    "pydantic-settings>=2.7.0",
]

# Development dependencies
extras_require = {
    "dev": [
        "pytest>=7.4.0",
        "pytest-asyncio>=0.21.0",
        "pytest-cov>=4.1.0",
        "hypothesis>=6.90.0",
        "black>=23.0.0",
        "flake8>=6.1.0",
        "mypy>=1.7.0",
    ],
}

setup(
    name="sharedmailbox",
    version=version,
    description="Shared mailbox coordination for concurrent end-to-end test runs",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    author="Trade Tariff E2E Team",
    license="MIT",
    python_requires=">=3.11",
    packages=find_packages(where="src", include=["sharedmailbox", "sharedmailbox.*"]),
    package_dir={"": "src"},
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "sharedmailbox=sharedmailbox.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Testing",
    ],
    keywords=["email", "testing", "e2e", "s3", "lock"],
)
