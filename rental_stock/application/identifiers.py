import re
import secrets
import time
from typing import Callable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_stock.domain.models import Unit

BARCODE_DIGITS = 12
_MAX_BARCODE_ATTEMPTS = 50


def serial_prefix(item_name: str, length: int = 3) -> str:
    """First ``length`` alphanumeric characters of the name, upper-cased."""
    prefix = re.sub(r"[^A-Za-z0-9]", "", item_name or "")[:length].upper()
    return prefix or "UNT"


class IdentifierGenerator:
    """Generates serial numbers and barcodes for newly provisioned units.

    Serials look like ``<PREFIX>-<item id>-<timestamp-ms><index:03d>``, for
    example ``INT-42-1718000000000001``. The item id keeps batches for different
    items apart even when they share a prefix and a millisecond; batches for the
    same item are serialized by the item lock. Barcodes are random 12-digit
    strings. Both are checked against the units table and against the batch
    being built.
    """

    def __init__(
        self,
        db: Session,
        prefix_length: int = 3,
        clock: Optional[Callable[[], float]] = None,
        random_digits: Optional[Callable[[int], str]] = None,
    ):
        self.db = db
        self.prefix_length = prefix_length
        self.clock = clock or time.time
        self.random_digits = random_digits or _random_digits

    def serials(self, item_name: str, item_id: int, count: int) -> List[str]:
        prefix = f"{serial_prefix(item_name, self.prefix_length)}-{item_id}-"
        timestamp = int(self.clock() * 1000)
        while True:
            batch = [f"{prefix}{timestamp}{index:03d}" for index in range(1, count + 1)]
            if not self._existing(Unit.serial_number, batch):
                return batch
            # Same item provisioned again within the same millisecond
            timestamp += 1

    def barcodes(self, count: int) -> List[str]:
        chosen: Set[str] = set()
        result: List[str] = []
        attempts = 0
        while len(result) < count:
            candidates = [self.random_digits(BARCODE_DIGITS) for _ in range(count - len(result))]
            candidates = [c for c in dict.fromkeys(candidates) if c not in chosen]
            taken = self._existing(Unit.barcode, candidates)
            for candidate in candidates:
                if candidate not in taken:
                    chosen.add(candidate)
                    result.append(candidate)
            attempts += 1
            if attempts > _MAX_BARCODE_ATTEMPTS and len(result) < count:
                raise RuntimeError("Could not generate unique barcodes")
        return result

    def _existing(self, column, values: List[str]) -> Set[str]:
        if not values:
            return set()
        return set(self.db.execute(select(column).where(column.in_(values))).scalars())


def _random_digits(length: int) -> str:
    return str(secrets.randbelow(10 ** length)).zfill(length)
