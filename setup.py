"""
Setup script for the Retirement Projection Engine
Installs the retirement_engine package for multiprocessing compatibility
"""
from setuptools import setup
import os


requirements_path = os.path.join(os.path.dirname(__file__), 'requirements.txt')
requirements = []
if os.path.exists(requirements_path):
    with open(requirements_path, 'r') as f:
        requirements = [line.strip() for line in f if line.strip() and not line.startswith('#')]


package_dir = 'retirement_engine'
if os.path.exists(package_dir):
    setup(
        name='retirement-engine',
        version='1.0',
        description='Monte Carlo retirement projection with Social Security claiming, LTC events and withdrawal sequencing',
        packages=[package_dir],
        install_requires=requirements,
        extras_require={'test': ['pytest']},
        entry_points={'console_scripts': ['retirement-engine=retirement_engine.main:main']},
        python_requires='>=3.9',
        zip_safe=False,
    )
else:
    raise FileNotFoundError(f"Package directory '{package_dir}' not found")
