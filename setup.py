# setup.py

from setuptools import setup, find_packages
from pathlib import Path

readme = Path(__file__).parent / "README.md"
long_description = readme.read_text() if readme.exists() else ""

test_requires = [
    "pytest>=7.0.0",
    "pytest-asyncio>=0.21.0",
    "httpx>=0.24.0",
]

setup(
    name="tablewatch",
    version="0.1.0",
    author="TableWatch Maintainers",
    description="Real-time bot, collusion and multi-account detection for card-game platforms",
    long_description=long_description,
    long_description_content_type="text/markdown",

    packages=find_packages(exclude=["tests", "tests.*"]),

    install_requires=[
        "pydantic>=2.0.0",
        "pandas>=2.0.0",
        "numpy>=1.24.0",
        "scikit-learn>=1.3.0",
        "networkx>=3.0",
        "kafka-python>=2.1.0,<3",
        "redis>=5.0.1",
        "mlflow>=2.9.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
    ],

    extras_require={
        "test": test_requires,
        "dev": test_requires + ["black", "mypy"]
    },

    python_requires=">=3.10",

    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ]
)
