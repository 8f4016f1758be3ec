# Columns the external cleaning step writes to the staging table
STAGING_COLUMNS: list[str] = [
    "booking_id",
    "booking_status",
    "booking_datetime",
    "customer_id",
    "vehicle_type",
    "pickup_location",
    "drop_location",
    "payment_method",
    "booking_value",
    "ride_distance",
    "driver_ratings",
    "customer_rating",
    "is_cancelled",
]

# Staging natural-key columns grouped by the dimension they feed
DIMENSION_COLUMNS: dict[str, list[str]] = {
    "customer": ["customer_id"],
    "vehicle": ["vehicle_type"],
    "location": ["pickup_location", "drop_location"],
    "payment_method": ["payment_method"],
}

TRUE_VALUES = frozenset({"true", "t", "yes", "y", "1"})
FALSE_VALUES = frozenset({"false", "f", "no", "n", "0"})

# ratings are stored as DECIMAL(3,2) on a five-star scale
RATING_MIN = 0.0
RATING_MAX = 5.0
# DECIMAL(12,2)
MONEY_MAX = 9_999_999_999.99
