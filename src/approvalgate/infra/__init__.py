"""Audit and tracing plumbing shared by the approval, policy and gate packages."""
