"""
Configuration for the UniEats orders API.

Fee rates can come from the environment or from the "settings" collection;
either way a broken source never blocks checkout, we fall back to the
documented defaults and warn.
"""

import logging
import os
from typing import Any, Optional, Protocol

from schemas import FeeRates

logger = logging.getLogger(__name__)

DEFAULT_RATES = FeeRates(service_fee_rate=0.04, service_fee_cap=20.0, commission_rate=0.10)

SETTINGS_COLLECTION = "settings"
FINANCIAL_SETTINGS_ID = "financial"


class RateSource(Protocol):
    def load(self) -> FeeRates: ...


class StaticRateSource:
    def __init__(self, rates: FeeRates = DEFAULT_RATES) -> None:
        self.rates = rates

    def load(self) -> FeeRates:
        return self.rates


class EnvRateSource:
    """SERVICE_FEE_RATE / SERVICE_FEE_CAP / COMMISSION_RATE, unset keys keep the default."""

    def load(self) -> FeeRates:
        return FeeRates(
            service_fee_rate=float(os.getenv("SERVICE_FEE_RATE", DEFAULT_RATES.service_fee_rate)),
            service_fee_cap=float(os.getenv("SERVICE_FEE_CAP", DEFAULT_RATES.service_fee_cap)),
            commission_rate=float(os.getenv("COMMISSION_RATE", DEFAULT_RATES.commission_rate)),
        )


class MongoRateSource:
    def __init__(self, db: Any) -> None:
        self.db = db

    def load(self) -> FeeRates:
        doc = self.db[SETTINGS_COLLECTION].find_one({"_id": FINANCIAL_SETTINGS_ID})
        if doc is None:
            raise LookupError("No financial settings document")
        return FeeRates(
            service_fee_rate=doc.get("service_fee_rate", DEFAULT_RATES.service_fee_rate),
            service_fee_cap=doc.get("service_fee_cap", DEFAULT_RATES.service_fee_cap),
            commission_rate=doc.get("commission_rate", DEFAULT_RATES.commission_rate),
        )


def resolve_rates(source: Optional[RateSource]) -> FeeRates:
    if source is None:
        return DEFAULT_RATES
    try:
        return source.load()
    except (ValueError, LookupError) as e:
        logger.warning("Rate source %s unusable (%s), using default rates", type(source).__name__, e)
    except Exception:
        logger.warning("Rate source %s unavailable, using default rates", type(source).__name__, exc_info=True)
    return DEFAULT_RATES


def rate_source_from_env(db: Any = None) -> RateSource:
    kind = os.getenv("RATES_SOURCE", "env").lower()
    if kind == "database":
        if db is None:
            logger.warning("RATES_SOURCE=database but no database is configured, reading rates from env")
            return EnvRateSource()
        return MongoRateSource(db)
    return EnvRateSource()


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
