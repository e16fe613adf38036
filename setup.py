from setuptools import setup, find_packages

setup(name='csvstream',
      version='0.1.0',
      description='Streaming, byte-oriented CSV record parser for Python',
      packages=find_packages(exclude=['tests', 'tests.*']),
      python_requires='>=3.8',
      install_requires=['numpy'],
      extras_require={'test': ['pytest']},
      zip_safe=False)
