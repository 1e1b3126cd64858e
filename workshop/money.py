from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    # str() evita carregar o erro binário do float para o Decimal
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def money(value) -> Decimal:
    """Arredonda para 2 casas, meio para cima."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity, unit_price) -> Decimal:
    return money(to_decimal(quantity) * to_decimal(unit_price))
