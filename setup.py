from setuptools import find_packages, setup

setup(
    name="buildpack-harness",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "docker>=6.1.0",
        "requests>=2.31.0",
        "structlog>=23.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "testcontainers>=3.7.0",
            "httpx>=0.24.0",
        ],
    },
)
