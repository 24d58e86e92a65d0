from setuptools import setup, find_packages

setup(
    name="distlab",
    version="0.1.0",
    description="Deterministic, step-through simulations of distributed-systems protocols",
    author="adamfilli",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "examples.*"]),
    install_requires=[
        "matplotlib",
        "pandas",
    ],
    extras_require={
        "test": ["pytest"],
    },
    include_package_data=True,
    python_requires=">=3.13",
)
