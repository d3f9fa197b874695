"""
Setup script for Handshake - Rendezvous-based store-and-forward encrypted messaging.

This library provides:
- Multi-party handshake negotiation with agreed sort order
- Deterministic one-time lookup tokens as the only message addressing
- Chunked ChaCha20-Poly1305 encryption of every stored blob
- IPFS message store and signed hashmap rendezvous backends
- Parent-hash chain reconstruction of missed messages
- Encrypted local profile and chat storage (SQLite)
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='handshake-messenger',
    version='0.1.0',
    description='Rendezvous-based store-and-forward encrypted messaging with one-time lookup tokens',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
    install_requires=[
        'cryptography>=42.0.4',
        'argon2-cffi>=23.1.0',
        'httpx>=0.25.0',
        'tomli>=2.0.1; python_version<"3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
        ],
    },
)
