"""Setup script for the poslog Python package.

Installs two import packages from src/: `poslog_service` (HTTP server, CLI,
tool-call server) and `poslog_client` (log shipping client), plus the
`poslog` console script.
"""

from pathlib import Path

from setuptools import find_packages, setup

here = Path(__file__).parent.resolve()
version = {}
exec((here / "src" / "poslog_service" / "__init__.py").read_text(encoding="utf-8"), version)

setup(
    name="poslog",
    version=version["__version__"],
    description="Self-hosted log ingestion and viewing service with scenario grouping",
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.0",
        "psycopg2-binary>=2.9",
        "python-jose[cryptography]>=3.3",
        "python-multipart>=0.0.9",
        "python-dotenv>=1.0",
        "httpx>=0.25",
        "fastmcp>=2.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.25",
        ],
    },
    entry_points={
        "console_scripts": [
            "poslog=poslog_service.__main__:main",
        ],
    },
)
