[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slaballoc"
version = "0.1.0"
description = "A simulated buddy page allocator with slab object caches on top"
requires-python = ">=3.10"
dependencies = []
keywords = ["allocator", "buddy", "slab", "memory", "kmalloc", "simulation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
slaballoc-stress = "slaballoc.stress:main"

[tool.hatch.build.targets.wheel]
packages = ["slaballoc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
