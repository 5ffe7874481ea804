from setuptools import setup, find_packages

setup(
    name="meetscribe",
    version="0.1.0",
    description="Audio session and transcription lifecycle engine for meeting recordings",
    author="",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "google-cloud-speech>=2.16.0",
        "google-api-core>=2.0.0",
        "google-auth>=2.10.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "numpy>=1.21.0",
        ],
    },
)
