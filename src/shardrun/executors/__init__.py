from .base import Executor
from .docker import DockerExecutor
from .shell import LocalShellExecutor

__all__ = ["Executor", "DockerExecutor", "LocalShellExecutor"]
