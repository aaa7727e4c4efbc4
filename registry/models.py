"""
Token record tracked by the registry.

Identity is the lower-cased address. Block numbers are serialized as
strings so very large values survive any JSON consumer unchanged.
"""
import time
from dataclasses import dataclass, field, asdict
from typing import Dict, Optional


@dataclass
class Token:
    address: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    discovered_at: float = 0.0          # block time of the mint event
    first_seen: float = field(default_factory=time.time)
    origin_block: int = 0               # 0 for watch-list tokens
    pair_created_at: Optional[float] = None
    market_cap: Optional[float] = None
    price_change_m5: Optional[float] = None
    price_change_h1: Optional[float] = None
    last_enriched_at: Optional[float] = None
    logo_uri: Optional[str] = None
    is_manually_tracked: bool = False

    @property
    def key(self) -> str:
        return self.address.lower()

    def age_seconds(self, now: Optional[float] = None) -> float:
        """Age measured from pair creation when known, else from discovery."""
        now = time.time() if now is None else now
        reference = self.pair_created_at if self.pair_created_at is not None else self.discovered_at
        return now - reference

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["origin_block"] = str(self.origin_block)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Token":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["origin_block"] = int(known.get("origin_block") or 0)
        return cls(**known)
