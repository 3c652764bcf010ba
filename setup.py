"""
Legacy setup.py - kept for compatibility.

Note: This project uses pyproject.toml for configuration.
The version and dependencies are defined in pyproject.toml.
This file is maintained for backward compatibility only.
"""

from setuptools import setup, find_packages

# Version should match pyproject.toml
setup(
    name="invex",
    version="1.0.0",  # Must match pyproject.toml
    packages=find_packages(include=['invex', 'invex.*']),
    package_data={'invex': ['config/*.yaml', 'prompts/*.yaml']},
    install_requires=[
        'sqlalchemy>=2.0',
        'pydantic>=2.0',
        'pyyaml>=6.0',
        'openai>=1.40',
        'jinja2>=3.0',
        'pdf2image>=1.16',
        'Pillow>=9.0',
        'pdfminer.six>=20221105',
        'click>=8.0',
    ],
    entry_points={
        'console_scripts': ['invex=invex.cli:cli'],
    }
)
