"""Setup script for the cloudbbq-homie package."""

from setuptools import find_packages, setup

setup(
    name="cloudbbq-homie",
    version="0.1.5",
    description=(
        "Service to connect to barbecue thermometers over Bluetooth and report "
        "their readings to an MQTT broker following the Homie convention."
    ),
    author="the cloudbbq-homie authors",
    license="MIT OR Apache-2.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml",
        "python-dotenv",
        "paho-mqtt>=2.0.0",
        "bleak",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio",
            "black",
            "isort",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "cloudbbq-homie=cloudbbq_homie:main",
        ],
    },
)
