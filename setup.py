from setuptools import setup, find_packages

setup(
    name="fingertip_pulse",
    version="0.1.0",
    description="Camera PPG heart-rate measurement from a fingertip on the lens",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "scipy>=1.10",
        "opencv-python>=4.8",
    ],
    extras_require={
        "dev": ["pytest>=7.4"],
        "pi": ["picamera2"],
    },
    entry_points={
        "console_scripts": [
            "fingertip-pulse=main:cli",
        ]
    },
)
