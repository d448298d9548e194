from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TrafficSplit:
    """
    Value Object capturing where both listeners point at one instant.

    Each listener routes 100% of its traffic to a single pool; there is no
    weighted split between blue and green.
    """
    production_pool_id: Optional[str]
    test_pool_id: Optional[str] = None

    @property
    def has_production(self) -> bool:
        return self.production_pool_id is not None

    def routes_production_to(self, pool_id: str) -> bool:
        return self.production_pool_id == pool_id

    def to_dict(self) -> dict:
        return {
            "production_pool_id": self.production_pool_id,
            "test_pool_id": self.test_pool_id,
        }
