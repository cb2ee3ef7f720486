"""Git and GitHub CLI wrappers: worktrees, branch names, PR lookup."""
