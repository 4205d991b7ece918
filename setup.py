import os

from setuptools import setup, find_packages

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

with open(os.path.join(os.path.dirname(__file__), 'pyproject.toml'), 'rb') as f:
    pyproject = tomllib.load(f)


def load_long_description():
    with open(pyproject["project"]["readme"], mode='r', encoding="utf-8") as f:
        return f.read()


excludes = ("tests", "tests.*", "examples", "examples.*", "docs", "docs.*", "devtools", "devtools.*")

metadata = \
    dict(
        long_description=load_long_description(),
        long_description_content_type='text/markdown',
        zip_safe=False,
        packages=find_packages(where=".", exclude=excludes),
        include_package_data=True,
    )

if __name__ == '__main__':
    setup(**metadata)
