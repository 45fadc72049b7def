from __future__ import annotations

from django.db import models


class ReasonCode(models.TextChoices):
    UNSPECIFIED = "UNSPECIFIED", "Unspecified"
    ADJUSTMENT = "ADJUSTMENT", "Adjustment"
    FOUND = "FOUND", "Found"
    DAMAGED = "DAMAGED", "Damaged"
    LOST = "LOST", "Lost"
    RECOUNT = "RECOUNT", "Recount"
    TRANSFER = "TRANSFER", "Transfer"


class WriteMode:
    METADATA = "metadata"
    AGGREGATE = "aggregate"


LOCATION_SUMMARY_SEPARATOR = ", "

TALLY_CARD_NUMBER_MAX_LENGTH = 64
LOCATION_MAX_LENGTH = 128

DEFAULT_MAX_RECONCILE_ATTEMPTS = 3

# IntegerField range for qty on entries and location rows.
QTY_MIN = -(2**31)
QTY_MAX = 2**31 - 1

EMPTY_LOCATIONS_MESSAGE = "At least one location is required. Please add locations before saving."
