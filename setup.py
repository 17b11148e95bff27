from setuptools import setup


setup(
    name="merchant-match",
    version="0.1.0",
    description="Find merchant records across messy spreadsheet exports and write edits back to the source workbook",
    packages=["merchant_match"],
    package_data={
        "merchant_match": [
            "data/*.json",
        ]
    },
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "requests",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "merchant-match=merchant_match.cli:main",
        ]
    },
)
