from setuptools import setup
setup(name="distdata", version="0.1.0",
      description="Explicit placement of data and computation on a pool of workers. ",
      zip_safe=False,
      package_dir = {'distdata': 'distdata'},
      packages = [
        'distdata', 'distdata.core', 'distdata.lib', 'distdata.tests'
      ],
      license="GPLv3",
      python_requires='>=3.6',
      install_requires=['numpy', 'cloudpickle'],
      extras_require={'test': ['pytest']},
)
