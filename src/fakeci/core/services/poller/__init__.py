from .core import BranchLister, RepositoryPoller, branch_matches

__all__ = ["BranchLister", "RepositoryPoller", "branch_matches"]
