from setuptools import setup, find_packages

setup(
    name='cosyctl',
    version='0.1.0',
    packages=find_packages(),
    include_package_data=True,
    package_data={
        'cosyctl': ['templates/*'],
    },
    install_requires=[
        'typer',
        'requests',
        'python-dotenv',
        'PyYAML',
        'jsonschema',
        'kubernetes',
        'urllib3',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'cosyctl=cosyctl.cli:app'
        ]
    },
    author='COSY maintainers',
    description='Install and uninstall the COSY stack on Docker Compose or Kubernetes',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.9',
)
