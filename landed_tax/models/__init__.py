from landed_tax.models.enums import ItemStatus, RateSource, RunStatus, Staleness, ValuationMethod  # noqa: F401
