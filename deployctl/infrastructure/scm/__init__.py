from .github_client import BranchHead, GitHubClient

__all__ = ["BranchHead", "GitHubClient"]
