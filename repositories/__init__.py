"""
Repository Pattern - Storage abstraction layer

Each repository owns one entity and runs every operation in its own short
transaction. State transitions that must happen at most once (token claim,
deadline arming, chain status moves, job claims) are single conditional
UPDATE statements checked by rowcount.
"""
from .chain_repository import ChainRepository
from .token_repository import TokenRepository
from .job_repository import JobRepository

__all__ = [
    'ChainRepository',
    'TokenRepository',
    'JobRepository',
]
