from setuptools import setup, find_packages

setup(
    name='retirectl',
    version='0.1.0',
    packages=find_packages(exclude=['*.tests', '*.tests.*']),
    include_package_data=True,
    install_requires=[
        'typer',
        'kubernetes',
        'urllib3',
        'pydantic>=2',
        'python-dotenv',
        'PyYAML',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'retirectl=retirectl.cli:app'
        ]
    },
    author='Your Name',
    description='Rolling drain, reboot and re-admission of Kubernetes nodes by role',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
