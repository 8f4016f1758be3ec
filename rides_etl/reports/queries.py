# Business queries over the star schema. Placeholders are filled with
# backend-qualified table references; {where} is an optional cancellation
# filter on the fact alias "f". SQL is kept to what DuckDB and BigQuery share.

OVERALL_METRICS = """
SELECT
    COUNT(*) AS total_rides,
    ROUND(SUM(f.booking_value), 2) AS total_revenue,
    ROUND(AVG(f.booking_value), 2) AS avg_fare,
    ROUND(AVG(f.ride_distance), 2) AS avg_distance_km
FROM {fact} f
{where}
"""

CANCELLATION_RATE = """
SELECT
    COALESCE(CAST(SUM(CASE WHEN f.is_cancelled THEN 1 ELSE 0 END) AS BIGINT), 0) AS cancelled_rides,
    COUNT(*) AS total_rides,
    COALESCE(
        ROUND(100.0 * SUM(CASE WHEN f.is_cancelled THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0), 2),
        0
    ) AS cancellation_rate_pct
FROM {fact} f
"""

TOP_PICKUP_LOCATIONS = """
SELECT
    l.location_name,
    COUNT(*) AS total_rides
FROM {fact} f
JOIN {locations} l ON l.location_key = f.pickup_location_key
GROUP BY l.location_name
ORDER BY total_rides DESC, l.location_name ASC
LIMIT {limit}
"""

REVENUE_BY_VEHICLE_TYPE = """
SELECT
    v.vehicle_type,
    COUNT(*) AS total_rides,
    ROUND(SUM(f.booking_value), 2) AS total_revenue,
    ROUND(AVG(f.booking_value), 2) AS avg_fare
FROM {fact} f
JOIN {vehicles} v ON v.vehicle_key = f.vehicle_key
{where}
GROUP BY v.vehicle_type
ORDER BY total_revenue DESC, v.vehicle_type ASC
"""

TOP_CUSTOMERS = """
SELECT
    c.customer_id,
    COUNT(*) AS total_rides,
    ROUND(SUM(f.booking_value), 2) AS total_spent
FROM {fact} f
JOIN {customers} c ON c.customer_key = f.customer_key
GROUP BY c.customer_id
ORDER BY total_spent DESC, c.customer_id ASC
LIMIT {limit}
"""

DAILY_TREND = """
SELECT
    CAST(f.booking_datetime AS DATE) AS booking_date,
    COUNT(*) AS total_rides,
    ROUND(SUM(f.booking_value), 2) AS daily_revenue
FROM {fact} f
{where}
GROUP BY CAST(f.booking_datetime AS DATE)
ORDER BY booking_date
"""

HOURLY_PATTERN = """
SELECT
    EXTRACT(HOUR FROM f.booking_datetime) AS booking_hour,
    COUNT(*) AS total_rides,
    ROUND(AVG(f.booking_value), 2) AS avg_fare
FROM {fact} f
{where}
GROUP BY EXTRACT(HOUR FROM f.booking_datetime)
ORDER BY booking_hour
"""

PAYMENT_METHOD_ANALYSIS = """
SELECT
    pm.payment_method,
    COUNT(*) AS total_rides,
    ROUND(SUM(f.booking_value), 2) AS total_revenue
FROM {fact} f
JOIN {payment_methods} pm ON pm.payment_method_key = f.payment_method_key
{where}
GROUP BY pm.payment_method
ORDER BY total_revenue DESC, pm.payment_method ASC
"""
