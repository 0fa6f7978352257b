from setuptools import setup

# Read the contents of your README file
with open('README.md', encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='pycellgraph',
    author='pycellgraph developers',
    version='0.1.0',
    description='Shared-nearest-neighbor graph clustering (Louvain / Leiden) for single-cell data',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=['pycellgraph'],
    python_requires='>=3.9',
    install_requires=[
        'scanpy',
        'anndata',
        'scipy',
        'scikit-learn',
        'numpy',
        'pandas',
        'joblib',
        'tqdm',
        'python-igraph',
        'leidenalg',
        'kmedoids',
    ],
    extras_require={
        'test': ['pytest'],
    },
)
