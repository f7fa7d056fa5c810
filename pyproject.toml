[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memstreamer"
version = "5.23.0"
description = "Shared-memory video frame sinks, RTP packetizers and a sink dump tool"
requires-python = ">=3.10"
dependencies = []
keywords = ["video", "h264", "opus", "rtp", "sdp", "shared-memory", "streaming"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
memstreamer-dump = "memstreamer.dump:main"

[tool.hatch.build.targets.wheel]
packages = ["memstreamer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
