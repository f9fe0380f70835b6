from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="pskvpn",
    version="1.0.0",
    author="PSK-VPN Team",
    author_email="pskvpn@example.com",
    description="A Python VPN data plane: AES-GCM over UDP with a pre-shared key",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/pskvpn/pskvpn",
    packages=find_packages(),
    py_modules=["main"],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires=">=3.8",
    install_requires=[
        "pycryptodome>=3.14.1",
        "flask>=2.0.0",
        "werkzeug>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'pskvpn=main:main',
            'pskvpn-server=main:server_main',
            'pskvpn-client=main:client_main',
        ],
    },
    include_package_data=True,
)
