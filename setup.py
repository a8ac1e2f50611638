"""Setup script for the Geo-Grid Rank Tracking Platform."""

from setuptools import setup, find_packages

setup(
    name="geogrid-rank-platform",
    version="1.0.0",
    description="Geo-grid local rank tracking for service-area businesses",
    author="Common Notary Apostille",
    packages=find_packages(include=["rank_platform", "rank_platform.*"]),
    include_package_data=True,
    install_requires=[
        "sqlalchemy>=2.0.0",
        "click>=8.1.0",
        "rich>=13.6.0",
        "loguru>=0.7.0",
        "tenacity>=8.2.0",
        "python-dotenv>=1.0.0",
        "celery>=5.3.0",
        "redis>=5.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "geogrid=rank_platform.cli:cli",
        ],
    },
    python_requires=">=3.10",
)
