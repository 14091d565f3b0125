from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Optional


@dataclass
class Receipt:
    user_id: str
    id: Optional[int] = None
    image_uri: Optional[str] = None
    total_amount: Optional[Decimal] = None
    date_scanned: Optional[str] = None
    ocr_data: Optional[str] = None
    synced: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.total_amount is not None:
            data["total_amount"] = str(self.total_amount)
        return data


@dataclass
class UserProfile:
    id: int
    uid: str
    email: str
    full_name: Optional[str] = None
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UserSettings:
    user_id: str
    theme: str = "light"
    auto_backup: int = 0
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OHLCV:
    date: str  # YYYY-MM-DD
    open: float
    high: float
    low: float
    close: float
    adjusted_close: Optional[float] = None
    volume: Optional[int] = None

    @property
    def price(self) -> float:
        return self.adjusted_close if self.adjusted_close is not None else self.close

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Quote:
    symbol: str
    price: float
    timestamp: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
