from setuptools import find_packages, setup


setup_requires = ("setuptools_scm",)

install_requires = (
    "aiohttp>=3.9",
    "apolo-kube-client",
    "neuro-logging",
    "packaging",
    "pydantic>=2.6",
    "uvloop>=0.19",
)

tests_require = (
    "pytest>=8.0",
    "pytest-asyncio>=0.23",
)

setup(
    name="platform-secrets-injector",
    use_scm_version={
        "git_describe_command": "git describe --dirty --tags --long --match v*.*.*",
        "fallback_version": "1.0.0",
    },
    package_dir={"": "src"},
    packages=find_packages("src"),
    setup_requires=setup_requires,
    install_requires=install_requires,
    extras_require={"dev": tests_require},
    python_requires=">=3.11",
    entry_points={
        "console_scripts": (
            "platform-secrets-injector="
            "platform_secrets_injector.admission_controller.__main__:main"
        )
    },
)
