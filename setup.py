from setuptools import setup, find_packages

setup(
    name="mango-owner-monitor",
    version="1.0.0",
    description="Mango v3 perp order book monitor that reports owners of large resting orders",
    author="Mango Monitor Team",
    python_requires=">=3.10",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    py_modules=["main"],
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "dev": [
            line.strip()
            for line in open("requirements-dev.txt")
            if line.strip() and not line.startswith(("#", "-r"))
        ],
    },
    entry_points={
        "console_scripts": [
            "mango-owner-monitor=main:run",
        ],
    },
)
