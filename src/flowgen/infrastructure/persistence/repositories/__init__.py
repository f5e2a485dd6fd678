"""MongoDB repository implementations."""

from flowgen.infrastructure.persistence.repositories.api_key_repository import (
    MongoApiKeyRepository,
)
from flowgen.infrastructure.persistence.repositories.campaign_repository import (
    MongoCampaignRepository,
)
from flowgen.infrastructure.persistence.repositories.request_repository import (
    MongoRequestRepository,
)
from flowgen.infrastructure.persistence.repositories.thread_repository import (
    MongoThreadRepository,
)
from flowgen.infrastructure.persistence.repositories.user_repository import (
    MongoUserRepository,
)

__all__ = [
    "MongoApiKeyRepository",
    "MongoCampaignRepository",
    "MongoRequestRepository",
    "MongoThreadRepository",
    "MongoUserRepository",
]
