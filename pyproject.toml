[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cloudcost-exporter"
version = "0.1.0"
description = "Prometheus-style cost metrics for Google Cloud Storage and GKE, built from the Cloud Billing catalog"
requires-python = ">=3.10"
dependencies = []
keywords = ["prometheus", "metrics", "exporter", "cloud cost", "gcp", "gke", "gcs", "billing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cloudcost_exporter"]

[tool.hatch.build.targets.sdist]
include = ["cloudcost_exporter", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
