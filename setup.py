#!/usr/bin/env python3
"""Object Tracker - Setup Configuration"""

from setuptools import setup, find_packages

def get_version():
    return '1.0.0'

setup(
    name='object-tracker',
    version=get_version(),
    description='Percept fusion and object model for search-and-rescue robots',
    packages=find_packages(include=['object_tracker', 'object_tracker.*']),
    python_requires='>=3.8',
    install_requires=[
        'numpy>=1.21.0',
        'scipy>=1.7.0',
        'pyyaml>=5.4',
    ],
    extras_require={
        'dev': ['pytest>=7.0.0', 'pytest-cov>=4.0.0'],
        'viz': ['matplotlib>=3.4.0'],
    },
    entry_points={
        'console_scripts': [
            'object-tracker-demo=object_tracker.demo:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'License :: OSI Approved :: GNU Affero General Public License v3',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    keywords=['robotics', 'object-tracking', 'sensor-fusion', 'mahalanobis', 'search-and-rescue'],
)
