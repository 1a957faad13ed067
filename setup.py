from pathlib import Path
from setuptools import find_packages, setup


ROOT = Path(__file__).parent


def read_version() -> str:
    """Read ``__version__`` from the package without importing it."""
    init = ROOT / "hot_tokens" / "__init__.py"
    for line in init.read_text().splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    raise RuntimeError("__version__ not found")


setup(
    name="hot-tokens",
    version=read_version(),
    description="Hot token discovery, scoring and caching service for a bonding-curve launchpad",
    packages=find_packages(include=["hot_tokens", "hot_tokens.*"]),
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9",
        "flask>=2.2",
        "pydantic>=2.0",
        "redis>=5.0",
        "solders>=0.18",
        "werkzeug>=2.2",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": ["hot-tokens=hot_tokens.__main__:main"],
    },
)
