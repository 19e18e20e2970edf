"""
Setup configuration for the Predictive Maintenance Scheduling Engine
Enables the project to be installed as a Python package
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8') if (this_directory / "README.md").exists() else ""

# Core dependencies
core_requirements = [
    'numpy>=1.24.0',
    'pandas>=2.0.0',
    'scipy>=1.11.0',
    'scikit-learn>=1.3.0',
    'pyyaml>=6.0.0',
    'python-dotenv>=1.0.0',
    'colorlog>=6.7.0',
    'pulp>=2.7.0',
    'flask>=2.3.0',
]

# Optional dependencies
extras_require = {
    'dev': [
        'pytest>=7.4.0',
        'pytest-cov>=4.1.0',
    ],
}

extras_require['all'] = list(set(sum(extras_require.values(), [])))

# Package metadata
setup(
    name='predictive-maintenance-scheduler',
    version='1.0.0',
    author='IoT Analytics Team',
    author_email='iot-analytics@example.com',
    description='Predictive maintenance scheduling, fleet optimization and maintenance analytics',
    long_description=long_description,
    long_description_content_type='text/markdown',
    license='MIT',

    # Package discovery
    packages=find_packages(where='src'),
    package_dir={'': 'src'},

    # Include non-Python files
    include_package_data=True,
    package_data={
        'predictive_maintenance.config': ['*.yaml', '*.yml'],
    },

    # Python version requirement
    python_requires='>=3.8',

    # Dependencies
    install_requires=core_requirements,
    extras_require=extras_require,

    # Entry points for CLI commands
    entry_points={
        'console_scripts': [
            'pdm-plan=predictive_maintenance.cli:main',
        ],
    },

    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Scientific/Engineering',
        'Topic :: System :: Monitoring',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Environment :: Console',
        'Environment :: Web Environment',
    ],

    keywords='predictive-maintenance scheduling optimization reliability analytics',

    # Testing
    test_suite='tests',
    tests_require=[
        'pytest>=7.4.0',
        'pytest-cov>=4.1.0',
    ],

    zip_safe=False,
)
