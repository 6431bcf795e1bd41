"""Approval and policy authorization for irreversible operations.

Public API lives in the subpackages: approval (signed records and keys),
policy (policy engine) and gate (capability gate).
"""
