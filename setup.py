import setuptools

VERSION = '0.1.0'

TEST_REQUIRES = [
    'mockito>=1.1.1',
    'pytest>=5.1.2',
    'pytest-cov>=2.7.1',
    'ddt>=1.2',
]

setup_params = dict(
    name='swcache',
    version=VERSION,
    author='Kenneth VanderLinde',
    author_email='kwvanderlinde@gmail.com',
    url='https://github.com/kwvanderlinde/swcache',
    keywords='requests cache offline service-worker',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    package_dir={'swcache': 'swcache'},
    include_package_data=True,
    description='Offline-first, multi-strategy response caching for the requests library',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=['requests>=2.18.4', 'PyYAML>=5.1'],
    extras_require={
        'dev': TEST_REQUIRES,
        'test': TEST_REQUIRES,
    },
    entry_points={},
    python_requires='>=3.7',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Natural Language :: English',
        'Operating System :: OS Independent',

        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],
)


if __name__ == '__main__':
    setuptools.setup(**setup_params)
