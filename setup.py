#!/usr/bin/env python
from setuptools import setup

setup(
    name='rpmverify',
    version='0.1.0',
    description='Verify OpenPGP signatures of RPM packages',
    license='Apache-2.0',
    url='https://github.com/pschou/rpm-verify',
    packages=['rpmverify', 'rpmverify.gpg'],
    install_requires=[
        'cryptography>=3.1',
        'ecdsa>=0.18',
    ],
    extras_require={'test': ['pytest', 'mock']},
    platforms=['POSIX'],
    classifiers=[
        'Environment :: Console',
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: POSIX',
        'Programming Language :: Python :: 3',
        'Topic :: Security',
        'Topic :: System :: Software Distribution',
        'Topic :: Utilities',
    ],
    entry_points={'console_scripts': [
        'rpm-verify = rpmverify.__main__:_main',
    ]},
)
