"""
Remediation module - What a learner gets after failing a gate.

Components:
    - injection_policy: Practice sets and review links for failed nodes
"""

from .injection_policy import InjectionPolicy, InjectedEntrySpec

__all__ = [
    "InjectionPolicy",
    "InjectedEntrySpec",
]
