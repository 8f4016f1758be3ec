# Data-quality checks. Together with the load summary these are how skipped
# rows are surfaced; nothing here writes.

STAGING_VS_FACT_COUNTS = """
SELECT
    'Staging Table' AS source,
    COUNT(*) AS total_rows,
    COUNT(DISTINCT booking_id) AS unique_bookings
FROM {staging}
UNION ALL
SELECT
    'Fact Table' AS source,
    COUNT(*) AS total_rows,
    COUNT(DISTINCT booking_id) AS unique_bookings
FROM {fact}
"""

STAGING_DUPLICATES = """
SELECT
    COUNT(*) AS total_rows,
    COUNT(DISTINCT booking_id) AS unique_bookings,
    COUNT(*) - COUNT(DISTINCT booking_id) AS duplicate_rows
FROM {staging}
"""

# Staging rows left-joined to the dimensions; a NULL key means the row
# could not be loaded because of that field. Blank booking ids are excluded;
# the loader reports those as missing_booking_id.
MISSING_FOREIGN_KEYS = """
SELECT
    COALESCE(CAST(SUM(CASE WHEN c.customer_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS missing_customers,
    COALESCE(CAST(SUM(CASE WHEN v.vehicle_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS missing_vehicles,
    COALESCE(CAST(SUM(CASE WHEN pl.location_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS missing_pickup,
    COALESCE(CAST(SUM(CASE WHEN dl.location_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS missing_drop,
    COALESCE(CAST(SUM(CASE WHEN pm.payment_method_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS missing_payment
FROM {staging} b
LEFT JOIN {customers} c ON c.customer_id = b.customer_id
LEFT JOIN {vehicles} v ON v.vehicle_type = b.vehicle_type
LEFT JOIN {locations} pl ON pl.location_name = b.pickup_location
LEFT JOIN {locations} dl ON dl.location_name = b.drop_location
LEFT JOIN {payment_methods} pm ON pm.payment_method = b.payment_method
WHERE b.booking_id IS NOT NULL
  AND TRIM(CAST(b.booking_id AS STRING)) <> ''
"""

RECORDS_NOT_LOADED = """
SELECT
    b.booking_id,
    b.customer_id,
    b.vehicle_type,
    b.pickup_location,
    b.drop_location,
    'Record not in fact table' AS issue
FROM {staging} b
LEFT JOIN {fact} f ON f.booking_id = b.booking_id
WHERE f.booking_id IS NULL
ORDER BY b.booking_id
LIMIT {limit}
"""

# Every count must be zero after a correct load
ORPHANED_FACT_KEYS = """
SELECT
    COALESCE(CAST(SUM(CASE WHEN c.customer_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS orphan_customers,
    COALESCE(CAST(SUM(CASE WHEN v.vehicle_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS orphan_vehicles,
    COALESCE(CAST(SUM(CASE WHEN pl.location_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS orphan_pickup,
    COALESCE(CAST(SUM(CASE WHEN dl.location_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS orphan_drop,
    COALESCE(CAST(SUM(CASE WHEN pm.payment_method_key IS NULL THEN 1 ELSE 0 END) AS BIGINT), 0) AS orphan_payment
FROM {fact} f
LEFT JOIN {customers} c ON c.customer_key = f.customer_key
LEFT JOIN {vehicles} v ON v.vehicle_key = f.vehicle_key
LEFT JOIN {locations} pl ON pl.location_key = f.pickup_location_key
LEFT JOIN {locations} dl ON dl.location_key = f.drop_location_key
LEFT JOIN {payment_methods} pm ON pm.payment_method_key = f.payment_method_key
"""

DIMENSION_COUNTS = """
SELECT 'Customers' AS dimension, COUNT(*) AS count FROM {customers}
UNION ALL
SELECT 'Vehicles', COUNT(*) FROM {vehicles}
UNION ALL
SELECT 'Locations', COUNT(*) FROM {locations}
UNION ALL
SELECT 'Payment Methods', COUNT(*) FROM {payment_methods}
"""
