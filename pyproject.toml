[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "planetkit"
version = "0.1.0"
description = "Node tooling for a containerised Kubernetes runtime: resolv.conf handling, retries, rootfs tarballs and registry image import"
requires-python = ">=3.10"
keywords = ["kubernetes", "etcd", "resolv.conf", "docker", "tarball", "cluster"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
create-tarball = "planetkit.tarball:main"
docker-import = "planetkit.docker_import:main"

[tool.hatch.build.targets.wheel]
packages = ["planetkit"]

[tool.pytest.ini_options]
addopts = "-ra"
