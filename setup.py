import os
from setuptools import find_packages, setup


def main():
    def read(fname):
        with open(os.path.join(os.path.dirname(__file__), fname)) as _in:
            return _in.read()

    setup(
        name="basicnet",
        version="0.1",
        description="Small feedforward neural networks trained by backpropagation",
        packages=find_packages(exclude=["tests"]),
        long_description=read('README.md'),
        long_description_content_type="text/markdown",
        python_requires=">=3.6",
        install_requires=["numpy", "pandas", "matplotlib"],
        extras_require={"test": ["pytest"]},
    )

if __name__ == "__main__":
    main()
