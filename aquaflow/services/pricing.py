from dataclasses import dataclass, field

from aquaflow.core.errors import EmptyOrder, UnknownGallonType
from aquaflow.schemas.entities import LineItem, ServiceConfig


@dataclass(frozen=True)
class LineQuote:
    item: LineItem
    unit_price: float  # 0 for unknown types
    refill_total: float
    new_total: float

    @property
    def total(self) -> float:
        return self.refill_total + self.new_total


@dataclass(frozen=True)
class Quote:
    config_version: int
    lines: tuple[LineQuote, ...]
    unknown_types: tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> float:
        return sum(line.total for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.item.quantity for line in self.lines)


def quote(cart: list[LineItem] | tuple[LineItem, ...], config: ServiceConfig) -> Quote:
    """Price a cart against one catalog version.

    Refills are charged at the type's catalog price; a new container is
    charged at the single new-container price (its first fill is free).
    Unknown types are priced at zero and listed in ``unknown_types``.
    """
    lines = []
    unknown = []
    for item in cart:
        unit = config.catalog_price(item.name)
        if unit is None:
            unknown.append(item.name)
            lines.append(LineQuote(item=item, unit_price=0, refill_total=0, new_total=0))
            continue
        lines.append(LineQuote(
            item=item,
            unit_price=unit,
            refill_total=item.refill * unit,
            new_total=item.new * config.new_gallon_price,
        ))
    return Quote(config_version=config.version, lines=tuple(lines), unknown_types=tuple(unknown))


def price_order(cart: list[LineItem] | tuple[LineItem, ...], config: ServiceConfig) -> tuple[tuple[LineItem, ...], Quote]:
    """Validate a cart for booking creation and return (items to book, quote).

    Lines with both quantities at zero are dropped; an order with nothing
    left is an ``EmptyOrder``. Any unknown type rejects the order.
    """
    items = tuple(i for i in cart if i.refill > 0 or i.new > 0)
    if not items:
        raise EmptyOrder("order is empty: set a refill or new-container quantity")
    q = quote(items, config)
    if q.unknown_types:
        raise UnknownGallonType(list(q.unknown_types))
    return items, q
