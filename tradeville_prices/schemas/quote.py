from pydantic import BaseModel, computed_field


def change_percent(price: float, ref_price: float) -> float:
    if ref_price <= 0:
        return 0.0
    return (price - ref_price) / ref_price * 100


class SymbolQuote(BaseModel):
    symbol: str
    name: str = ""
    price: float = 0.0
    ref_price: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    day_min: float = 0.0
    day_max: float = 0.0
    volume: float = 0.0
    currency: str = ""
    weight: float = 0.0

    @computed_field
    @property
    def change_pct(self) -> float:
        return change_percent(self.price, self.ref_price)


class IndexWeight(BaseModel):
    symbol: str
    weight: float
