"""
Verification orchestrator.

Sequences the optional ledger and the authoritative directory for each
product operation:

* writes (``register``, ``flag_as_fake``) try the ledger once when it is
  available, ignore its outcome, then always apply the directory write;
* reads (``verify_by_id``, ``verify_by_qr``) return a ledger hit as-is and
  otherwise use the directory's answer, including its "not found".

Results report which store answered instead of keeping any shared status.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import List, Literal, Optional

from verisure import qr
from verisure.directory import ProductDirectory
from verisure.ledger import LedgerGateway, LedgerOutcome, LedgerStatus
from verisure.models import Product

logger = logging.getLogger(__name__)

Source = Literal["ledger", "directory"]


@dataclass(frozen=True)
class VerificationResult:
    name: str
    is_fake: bool
    source: Source
    product_id: Optional[str] = None


@dataclass(frozen=True)
class RegistrationResult:
    product: Product
    ledger_status: LedgerStatus


@dataclass(frozen=True)
class FlagResult:
    product: Product
    ledger_status: LedgerStatus


@dataclass
class DailyCount:
    date: date
    count: int = 0
    real: int = 0
    fake: int = 0


@dataclass
class Analytics:
    real_count: int = 0
    fake_count: int = 0
    total_count: int = 0
    daily: List[DailyCount] = field(default_factory=list)


class VerificationService:
    def __init__(self, ledger: LedgerGateway, directory: ProductDirectory):
        self.ledger = ledger
        self.directory = directory

    async def _try_ledger_write(self, operation: str, attempt) -> LedgerStatus:
        if not self.ledger.is_available():
            return LedgerStatus.UNAVAILABLE
        outcome: LedgerOutcome = await attempt()
        if outcome.ok:
            logger.info(f"Ledger {operation} succeeded ({outcome.tx_hash})")
        else:
            logger.warning(f"Ledger {operation} failed ({outcome.status.value}), using directory only")
        return outcome.status

    async def _try_ledger_read(self, product_id: str) -> Optional[VerificationResult]:
        if not self.ledger.is_available():
            return None
        outcome = await self.ledger.verify(product_id)
        if outcome.ok and outcome.record is not None:
            logger.info(f"Product {product_id} verified via ledger")
            return VerificationResult(
                name=outcome.record.name,
                is_fake=outcome.record.is_fake,
                source="ledger",
                product_id=product_id,
            )
        logger.info(f"Ledger gave no answer for {product_id} ({outcome.status.value}), falling back to directory")
        return None

    async def register(self, product_id: str, name: str) -> RegistrationResult:
        """Register a product. Raises DirectoryError if the directory insert fails."""
        product_id, name = product_id.strip(), name.strip()
        qr_hash = qr.generate_token(product_id)

        ledger_status = await self._try_ledger_write(
            "addProduct", lambda: self.ledger.register(product_id, name)
        )
        product = await self.directory.insert(product_id, name, qr_hash)
        return RegistrationResult(product=product, ledger_status=ledger_status)

    async def flag_as_fake(self, product_id: str) -> Optional[FlagResult]:
        product_id = product_id.strip()
        ledger_status = await self._try_ledger_write(
            "markAsFake", lambda: self.ledger.flag_as_fake(product_id)
        )
        product = await self.directory.mark_fake(product_id)
        if product is None:
            return None
        return FlagResult(product=product, ledger_status=ledger_status)

    async def verify_by_id(self, product_id: str) -> Optional[VerificationResult]:
        product_id = product_id.strip()
        if not product_id:
            return None

        result = await self._try_ledger_read(product_id)
        if result is not None:
            return result

        product = await self.directory.get_by_identifier(product_id)
        if product is None:
            return None
        return VerificationResult(
            name=product.name, is_fake=product.is_fake, source="directory", product_id=product.product_id
        )

    async def verify_by_qr(self, token: str) -> Optional[VerificationResult]:
        """
        Verify a scanned or typed QR token.

        When the ledger is available it is asked about the product id embedded
        in the token, and a ledger hit is returned without checking the token
        itself: any well-formed ``product_<id>_<millis>_<suffix>`` string
        resolves to that product's ledger record. Only the directory path
        matches the exact stored token.
        """
        token = qr.sanitize_candidate(token)
        if not token:
            return None

        embedded_id = qr.parse_token(token)
        if embedded_id:
            result = await self._try_ledger_read(embedded_id)
            if result is not None:
                return result

        product = await self.directory.get_by_qr_hash(token)
        if product is None:
            return None
        return VerificationResult(
            name=product.name, is_fake=product.is_fake, source="directory", product_id=product.product_id
        )

    async def list_products(self) -> List[Product]:
        return await self.directory.list_all()

    async def analytics(self) -> Analytics:
        rows = await self.directory.flag_projection()
        stats = Analytics(total_count=len(rows))
        buckets: "OrderedDict[date, DailyCount]" = OrderedDict()

        for is_fake, created_at in sorted(rows, key=lambda r: r[1]):
            day = created_at.date()
            bucket = buckets.setdefault(day, DailyCount(date=day))
            bucket.count += 1
            if is_fake:
                bucket.fake += 1
                stats.fake_count += 1
            else:
                bucket.real += 1
                stats.real_count += 1

        stats.daily = list(buckets.values())
        return stats
