from orderrelay.backends.github import GitHubContentsBackend
from orderrelay.backends.local import LocalFileBackend

__all__ = ["GitHubContentsBackend", "LocalFileBackend"]
