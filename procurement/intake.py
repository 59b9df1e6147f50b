"""
Order-sheet intake.

Supplier orders arrive as small semicolon-separated sheets, one line per SKU:

    SKU;Quantità;Prezzo Unitario
    ABC123;10;25.50
    DEF456;5;15,75

Prices are typed by hand in either locale, so both "." and "," are accepted
as the decimal separator.  English headers (SKU;Quantity;Unit Price) and a
few optional descriptive columns are recognised as well.
"""
import csv
import io
import logging
import re
from pathlib import Path
from typing import Optional, Union

from models.supplier_order import OrderProduct
from .errors import ValidationError

logger = logging.getLogger(__name__)

ORDER_TEMPLATE = "SKU;Quantità;Prezzo Unitario\nABC123;10;25.50\nDEF456;5;15.75\n"

# Canonical field -> accepted header spellings (compared lower-cased)
_HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "sku":          ("sku", "codice"),
    "quantity":     ("quantità", "quantita", "quantity", "qty"),
    "price":        ("prezzo unitario", "prezzo", "unit price", "price"),
    "name":         ("nome", "name", "description"),
    "category":     ("anagrafica", "category"),
    "product_type": ("tipologia", "type", "product type"),
    "brand":        ("marca", "brand"),
}
_REQUIRED = ("sku", "quantity", "price")


def order_template() -> str:
    """Return the CSV template operators fill in for a new order."""
    return ORDER_TEMPLATE


def parse_price(value: Union[str, int, float, None]) -> float:
    """
    Parse a unit price typed in either locale.

        "25.50" -> 25.5      "25,50" -> 25.5
        "1.234,56" -> 1234.56   "1,234.56" -> 1234.56
        "€ 12,00" -> 12.0

    Raises ValueError when nothing numeric is left.
    """
    if value is None:
        raise ValueError("price is missing")
    if isinstance(value, (int, float)):
        return float(value)

    cleaned = re.sub(r"[^\d.,\-]", "", str(value))
    if not cleaned:
        raise ValueError(f"not a price: {value!r}")

    if "," in cleaned and "." in cleaned:
        # Whichever separator comes last is the decimal one
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(",") > 1:
        cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    return float(cleaned)


def parse_order_csv(
    source: Union[str, Path],
    delimiter: str = ";",
) -> list[OrderProduct]:
    """
    Parse an order sheet into order lines.

    Args:
        source:     Path to a CSV file, or the CSV text itself.
        delimiter:  Column separator (";" for the standard template).

    Blank lines are skipped.  Every unreadable row is collected and reported
    in a single ValidationError so the operator can fix the sheet in one go.
    Quantity / price range checks are left to create_order().
    """
    text = _read_source(source)
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)

    try:
        headers = next(reader)
    except StopIteration:
        raise ValidationError("The order sheet is empty")

    columns = _map_headers(headers)
    missing = [f for f in _REQUIRED if f not in columns]
    if missing:
        raise ValidationError(
            f"Missing headers: {', '.join(missing)}",
            problems=[f"missing header for {f}" for f in missing],
        )

    products: list[OrderProduct] = []
    problems: list[str] = []

    for line_no, row in enumerate(reader, start=2):
        if not any(cell.strip() for cell in row):
            continue

        def cell(field: str) -> Optional[str]:
            idx = columns.get(field)
            if idx is None or idx >= len(row):
                return None
            return row[idx].strip() or None

        sku = cell("sku")
        if not sku:
            problems.append(f"line {line_no}: missing SKU")
            continue

        try:
            quantity = int(cell("quantity") or "")
        except ValueError:
            problems.append(f"line {line_no}: invalid quantity {cell('quantity')!r} for {sku}")
            continue

        try:
            price = parse_price(cell("price"))
        except ValueError:
            problems.append(f"line {line_no}: invalid price {cell('price')!r} for {sku}")
            continue

        products.append(OrderProduct(
            sku=sku,
            quantity=quantity,
            price=price,
            name=cell("name"),
            category=cell("category"),
            product_type=cell("product_type"),
            brand=cell("brand"),
        ))

    if problems:
        raise ValidationError(
            f"Order sheet has {len(problems)} invalid line(s)", problems=problems,
        )

    logger.info("Parsed order sheet: %d line(s)", len(products))
    return products


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _read_source(source: Union[str, Path]) -> str:
    if isinstance(source, Path):
        # utf-8-sig drops the BOM spreadsheet exports like to add
        return source.read_text(encoding="utf-8-sig")
    return source.lstrip("\ufeff")


def _map_headers(headers: list[str]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for idx, header in enumerate(headers):
        key = header.strip().lower()
        for field, aliases in _HEADER_ALIASES.items():
            if key in aliases and field not in columns:
                columns[field] = idx
    return columns
