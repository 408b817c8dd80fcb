from setuptools import setup, find_packages

setup(
    name="wornvault-guard",
    version="0.1.0",
    packages=find_packages(include=["storefront", "storefront.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "starlette>=0.37",
        "pydantic>=2.6",
        "pydantic-settings>=2.7",
        "itsdangerous>=2.1",
        "python-multipart>=0.0.9",
        "redis>=5.0",
        "cryptography>=42.0",
        "bleach>=6.0",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
            "Pillow>=10.0",
        ],
    },
)
