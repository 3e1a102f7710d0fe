from setuptools import setup

version = '0.1'

with open("README.md", "r", encoding="utf-8") as f:
    long_descr = f.read()

setup(
    name='pyciv',
    packages=['pyciv'],
    py_modules=['main'],
    version=version,
    license='Apache 2.0',
    description='Session layer for Icom CI-V radios over a serial link',
    long_description=long_descr,
    long_description_content_type='text/markdown',
    author='johnno',
    author_email='johnno@example.com',
    url='https://github.com/johnno/pyciv',
    download_url=f'https://github.com/johnno/pyciv/archive/{version}.tar.gz',
    keywords=['Icom', 'CI-V', 'ID-52', 'Ham Radio', 'Serial'],
    python_requires='>=3.10',
    install_requires=[
        "aiohttp>=3.8.3",
        "pyserial-asyncio>=0.6"
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21"
        ]
    },
    entry_points={
        "console_scripts": ["pyciv=main:main"]
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Ham Radio',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3.10'
    ],
)
