"""
Setup configuration for SuperScale
"""

from setuptools import setup, find_packages

setup(
    name="superscale",
    version="1.0.0",
    description="Multi-backend image super-resolution pipeline with tiled AI inference",
    long_description=(
        "Upscales images by an arbitrary factor through neural, hardware and "
        "classical backends, with tiling, test-time augmentation and exact "
        "output sizing."
    ),
    packages=find_packages(exclude=("tests", "tests.*")),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Multimedia :: Graphics",
        "Topic :: Scientific/Engineering :: Image Processing",
    ],
    python_requires=">=3.9",
    install_requires=[
        "opencv-python>=4.10.0",
        "numpy>=2.1.3",
        "Pillow>=11.0.0",
        "python-dotenv>=1.0.1",
    ],
    extras_require={
        "dev": [
            "pytest>=8.3.3",
            "pytest-cov>=6.0.0",
            "black>=24.10.0",
            "flake8>=7.1.1",
            "mypy>=1.13.0",
        ],
        "ml": [
            "torch>=2.5.1",
            "torchvision>=0.20.1",
            "basicsr>=1.4.2",
            "realesrgan>=0.3.0",
        ],
    },
)
