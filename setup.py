"""
Setup script for the minibot WhatsApp bot.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read version from minibot/__init__.py
version = "1.0.0"
init_file = Path(__file__).parent / "minibot" / "__init__.py"
if init_file.exists():
    for line in init_file.read_text().splitlines():
        if line.startswith("__version__"):
            version = line.split("=")[1].strip().strip('"').strip("'")
            break

setup(
    name="wa-minibot",
    version=version,
    description="Single-account WhatsApp command bot with a web pairing page",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["minibot", "minibot.*"]),
    package_data={
        "minibot.gateway": ["static/*.html"],
    },
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "minibot=minibot.__main__:main",
        ],
    },
    install_requires=[
        "pyaileys>=0.1.5",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "websockets>=12.0",
        "qrcode>=7.4",
        "psutil>=5.9.0",
        "pyyaml>=6.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.12.0",
            "httpx>=0.25.0",
        ],
    },
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Chat",
    ],
    keywords="whatsapp bot fastapi websocket",
)
