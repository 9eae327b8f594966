"""Order validation and once-per-hour logging."""

import re
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from wabot.observability.metrics import MetricsStore
from wabot.storage.orders import OrderStore

_TOTAL_KEYS = ("total_ars", "totalArs", "total")


def parse_amount(raw: Any) -> float | None:
    """
    Parse a money amount as written by people.

    Handles `79800`, `79.800`, `51,90 €`, `$ 1.234,56` and `1,234.56`.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)

    text = re.sub(r"[^\d,.\-]", "", str(raw))
    if not re.search(r"\d", text):
        return None

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        tail = text.rpartition(",")[2]
        text = text.replace(",", "") if text.count(",") > 1 or len(tail) == 3 else text.replace(",", ".")
    elif "." in text:
        tail = text.rpartition(".")[2]
        if text.count(".") > 1 or len(tail) == 3:
            text = text.replace(".", "")

    try:
        return float(text)
    except ValueError:
        return None


class OrderDraft(BaseModel):
    """An order as proposed by the reply generator. Product, quantity and total are required."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(default="", validation_alias=AliasChoices("nombre", "name"))
    product: str = Field(validation_alias=AliasChoices("producto", "product"))
    quantity: int = Field(gt=0, validation_alias=AliasChoices("cantidad", "quantity"))
    total: float = Field(gt=0, validation_alias=AliasChoices(*_TOTAL_KEYS))
    total_raw: str = ""
    address: str = Field(default="", validation_alias=AliasChoices("direccion", "address"))
    postal_code: str = Field(default="", validation_alias=AliasChoices("cp", "postal_code", "postalCode"))
    city: str = Field(default="", validation_alias=AliasChoices("ciudad", "city"))

    @model_validator(mode="before")
    @classmethod
    def _keep_raw_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("total_raw"):
            for key in _TOTAL_KEYS:
                if data.get(key) not in (None, ""):
                    return {**data, "total_raw": str(data[key])}
        return data

    @field_validator("name", "address", "postal_code", "city", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("product", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> str:
        text = "" if value is None else str(value).strip()
        if not text:
            raise ValueError("product is required")
        return text

    @field_validator("quantity", mode="before")
    @classmethod
    def _parse_quantity(cls, value: Any) -> Any:
        if isinstance(value, str):
            match = re.search(r"\d+", value)
            if not match:
                raise ValueError(f"no quantity in {value!r}")
            return int(match.group(0))
        return value

    @field_validator("total", mode="before")
    @classmethod
    def _parse_total(cls, value: Any) -> float:
        amount = parse_amount(value)
        if amount is None:
            raise ValueError(f"unreadable total {value!r}")
        return amount


def order_bucket(now: datetime) -> str:
    return now.strftime("%Y%m%d%H")


class OrderLogger:
    """
    Persist validated orders at most once per contact per clock hour.

    The in-memory index covers the last 48 hours; the last persisted record
    of the contact is checked too so restarts do not double-log.
    """

    def __init__(
        self,
        store: OrderStore,
        metrics: MetricsStore | None = None,
        now: Callable[[], datetime] = datetime.now,
        retention_hours: int = 48,
    ):
        self.store = store
        self.metrics = metrics
        self._now = now
        self.retention = timedelta(hours=retention_hours)
        self._logged: dict[str, datetime] = {}

    def _prune(self, now: datetime) -> None:
        floor = now - self.retention
        for key in [k for k, at in self._logged.items() if at < floor]:
            self._logged.pop(key, None)

    def record(
        self,
        contact: str,
        order_fields: dict[str, Any],
        raw_text: str,
        ai_text: str = "",
        chat_address: str = "",
    ) -> bool:
        """Validate and store an order; returns True only when a record was written."""
        try:
            draft = OrderDraft.model_validate(order_fields)
        except ValidationError as e:
            logger.info(f"Ignoring incomplete order from {contact}: {e.error_count()} invalid field(s)")
            return False

        now = self._now()
        bucket = order_bucket(now)
        dedup_key = f"{contact}:{bucket}"
        self._prune(now)

        if dedup_key in self._logged:
            logger.debug(f"Order for {contact} already logged in bucket {bucket}")
            return False
        last = self.store.last_for_contact(contact)
        if last is not None and last.get("bucket") == bucket:
            self._logged[dedup_key] = now
            logger.debug(f"Order for {contact} already persisted in bucket {bucket}")
            return False

        record = {
            "contact": contact,
            "chatAddress": chat_address,
            "name": draft.name,
            "product": draft.product,
            "quantity": draft.quantity,
            "total": draft.total,
            "totalRaw": draft.total_raw,
            "address": draft.address,
            "postalCode": draft.postal_code,
            "city": draft.city,
            "userMessage": raw_text,
            "aiMessage": ai_text,
            "bucket": bucket,
            "createdAt": now.replace(microsecond=0).isoformat(),
        }
        if not self.store.append(record):
            return False

        self._logged[dedup_key] = now
        if self.metrics is not None:
            self.metrics.record_order(contact=contact, bucket=bucket)
        logger.info(f"Order logged for {contact}: {draft.quantity} x {draft.product} ({draft.total_raw})")
        return True
