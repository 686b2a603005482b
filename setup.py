from setuptools import setup, find_packages

setup(
    name="scmarkers",
    version="0.1.0",
    description="Differential features and label transfer for single-cell data",
    long_description="""scmarkers finds marker genes and peaks between groups of cells with Seurat-style tests (Wilcoxon, bimodal likelihood ratio, ROC, t, negative binomial, Poisson, hurdle, DESeq2 and logistic regression), and co-embeds scATAC-seq with scRNA-seq cells by transferring cell type labels through CCA anchors. Per-feature tests run in parallel with joblib and use Numba for the hot loops.""",
    author="scmarkers Team",
    author_email="",
    url="",
    packages=find_packages(include=["scmarkers", "scmarkers.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "scikit-learn",
        "scipy",
        "statsmodels>=0.14",
        "numba",
        "tqdm",
        "joblib",
        "patsy",
        "anndata",
        "scanpy",
        "matplotlib",
    ],
    extras_require={
        "deseq": ["pydeseq2>=0.5"],
        "test": ["pytest"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Bio-Informatics"
    ],
    license="MIT",
    python_requires=">=3.9"
)
