"""Distribution core — round registry, replay guard, authorizer, claim processor."""

from roundclaim.distribution.authorizer import Authorization, ClaimAuthorizer
from roundclaim.distribution.processor import ClaimProcessor, build_request
from roundclaim.distribution.registry import RoundRegistry
from roundclaim.distribution.replay import ReplayGuard

__all__ = [
    "Authorization",
    "ClaimAuthorizer",
    "ClaimProcessor",
    "ReplayGuard",
    "RoundRegistry",
    "build_request",
]
