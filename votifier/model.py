# votifier/model.py

from dataclasses import dataclass, asdict
from typing import Dict


@dataclass(frozen=True)
class Vote:
    """
    One decoded vote, as reported by the sending service.

    `address` and `timestamp` are whatever the sender wrote; neither is
    checked against the socket peer or parsed as a date.
    """
    service_name: str
    username: str
    address: str
    timestamp: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    def __str__(self) -> str:
        return (f"Vote (from:{self.service_name} username:{self.username} "
                f"address:{self.address} timeStamp:{self.timestamp})")
