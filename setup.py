"""Setup configuration for the ViralDeals commerce backend."""

from setuptools import setup, find_packages

setup(
    name="viraldeals",
    version="1.0.0",
    description="ViralDeals cart, checkout, order and PhonePe payment services (FastAPI, Redis, Kafka)",
    author="ViralDeals",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn>=0.27.0",
        "redis>=5.0.0",
        "confluent-kafka>=2.3.0",
        "sqlalchemy>=2.0.23",
        "psycopg2-binary>=2.9.9",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "httpx>=0.26.0",
        "tzdata>=2024.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "fakeredis>=2.21.0",
        ],
    },
)
