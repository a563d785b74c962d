from setuptools import setup, find_packages

setup(
    name="netchat",
    version="1.0.0",
    description="Multi-client chat server/client over a reliable-message transport",
    author="Your Name",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "colorama",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "netchat = netchat.__main__:main",
        ],
    },
    python_requires=">=3.10",
)
