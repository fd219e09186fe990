from setuptools import setup, find_packages

def parse_requirements(requirements):
    with open(requirements) as f:
        return [l.strip('\n') for l in f if l.strip('\n') and not l.startswith('#')]

requirements = parse_requirements("requirements.txt")

setup(
    name='skycrm_backend',
    version='0.1.0',
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
    package_dir={"": "src"},
    packages=find_packages(where="src", include=["skycrm_backend", "skycrm_backend.*", "skycrm_types", "skycrm_types.*"]),
    python_requires=">=3.10",
)
