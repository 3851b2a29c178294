[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appframework"
version = "0.1.0"
description = "Building blocks for Kubernetes application operators: alarm logging, templating, resource apply, helm deployment, monitoring and component-test matchers."
requires-python = ">=3.10"
keywords = ["kubernetes", "operator", "helm", "alarm", "templating", "admission"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
    "jinja2",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["appframework"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
