#!/usr/bin/env python3
"""A setuptools based setup module.

"""

from os.path import abspath, dirname, join
from setuptools import setup


here = abspath(dirname(__file__))
with open(join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='linkbackup',
    description='full and reverse incremental backups with `rsync` and hard links',
    keywords='backup cli commandline rsync hardlink',
    license='MIT',
    long_description=long_description,
    long_description_content_type='text/markdown',
    use_scm_version={'fallback_version': '0.1.0'},
    packages=('linkbackup',),
    python_requires='>=3.10',
    install_requires=[
        'dateparser>=1.1.0',
        'humanfriendly>=10.0',
        'psutil>=5.9.0',
        'python-dateutil>=2.8.2',
        'pytz>=2022.1',  # needed by `dateparser`
        'xdg-base-dirs>=6.0.0',
    ],
    extras_require={
        'dev': [
            'coverage>=7.0',
            'flake8>=6.0',
            'pytest>=7.0',
            'pytest-cov>=4.0',
            'tox>=4.0',
        ],
        'journald': ['systemd-python>=234'],
    },
    entry_points={
        'console_scripts': [
            'linkbackup=linkbackup:main',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Topic :: System :: Archiving :: Backup',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
    ],
)
