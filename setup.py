"""
Rifa Ledger - partner commission and settlement ledger for raffles
"""

from setuptools import setup, find_namespace_packages

setup(
    name="rifa-ledger",
    version="1.0.0",
    description="Partner commission, door-to-door settlement and prize ledger for raffle sales",
    python_requires=">=3.11",
    packages=find_namespace_packages(include=["shared*", "raffle_api*", "worker*"]),
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "mercadopago>=2.2.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "asyncpg>=0.29.0",
        "python-dotenv>=1.0.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "aiosqlite>=0.19.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "rifa-ledger-api=raffle_api.main:main",
            "rifa-ledger-worker=worker.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.11",
    ],
)
