"""SQL planning for ranked radius searches over the provider index."""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from discovery.geo import DISTANCE_EPSILON_KM, bounding_box
from discovery.search.schemas import SearchQuery
from discovery.store import PROVIDER_COLUMNS

# Same expression in the predicate and the sort key, so "in radius" and
# "ranked by distance" can never disagree.
DISTANCE_EXPR = "haversine_km(:origin_lat, :origin_lon, p.latitude, p.longitude)"

ORDER_BY = (
    "p.subscription_tier DESC, "
    "p.average_rating_centi DESC, "
    "distance_km ASC, "
    "p.provider_id ASC"
)


@dataclass(frozen=True)
class SearchPlan:
    """Data and count statements sharing one filter predicate.

    Attributes:
        data_sql: Filtered, ranked, paginated row query.
        data_params: Parameters for data_sql (filter plus paging).
        count_sql: Cardinality of the same filter, without paging.
        count_params: Parameters for count_sql.
    """

    data_sql: str
    data_params: dict[str, object]
    count_sql: str
    count_params: dict[str, object]


def _min_rating_centi(min_rating: Decimal) -> int:
    return int((Decimal(min_rating) * 100).to_integral_value(rounding=ROUND_CEILING))


def build_predicate(query: SearchQuery) -> tuple[str, dict[str, object]]:
    """Build the WHERE clause shared by the data and count statements.

    The bounding box on latitude/longitude lets SQLite use the location
    index; the exact great-circle check then removes the box corners.

    Args:
        query: Search to plan; radius must be positive.

    Returns:
        Tuple of (where clause without the WHERE keyword, parameters).
    """
    origin = query.origin
    box = bounding_box(origin, query.radius_km)
    params: dict[str, object] = {
        "origin_lat": origin.latitude,
        "origin_lon": origin.longitude,
        "radius_km": query.radius_km + DISTANCE_EPSILON_KM,
        "min_lat": box.min_latitude,
        "max_lat": box.max_latitude,
    }
    clauses = [
        "p.is_active = 1",
        "p.latitude BETWEEN :min_lat AND :max_lat",
    ]
    if box.min_longitude is not None:
        clauses.append("p.longitude BETWEEN :min_lon AND :max_lon")
        params["min_lon"] = box.min_longitude
        params["max_lon"] = box.max_longitude
    clauses.append(f"{DISTANCE_EXPR} <= :radius_km")

    if query.service_ids:
        names = []
        for i, service_id in enumerate(sorted(query.service_ids)):
            params[f"service_{i}"] = str(service_id)
            names.append(f":service_{i}")
        clauses.append(
            "EXISTS (SELECT 1 FROM provider_services ps "
            f"WHERE ps.row_id = p.id AND ps.service_id IN ({', '.join(names)}))"
        )

    if query.min_rating is not None:
        params["min_rating_centi"] = _min_rating_centi(query.min_rating)
        clauses.append("p.average_rating_centi >= :min_rating_centi")

    if query.tiers:
        names = []
        for i, tier in enumerate(sorted(query.tiers)):
            params[f"tier_{i}"] = int(tier)
            names.append(f":tier_{i}")
        clauses.append(f"p.subscription_tier IN ({', '.join(names)})")

    return " AND ".join(clauses), params


def plan_search(query: SearchQuery) -> SearchPlan:
    """Plan the data and count statements for a search.

    Args:
        query: Clamped search with a positive radius.

    Returns:
        Statements with filtering, ranking and paging pushed into SQL.
    """
    where, params = build_predicate(query)

    data_sql = (
        f"SELECT {PROVIDER_COLUMNS}, {DISTANCE_EXPR} AS distance_km "
        "FROM searchable_providers p "
        f"WHERE {where} "
        f"ORDER BY {ORDER_BY} "
        "LIMIT :take OFFSET :skip"
    )
    count_sql = f"SELECT COUNT(*) FROM searchable_providers p WHERE {where}"

    return SearchPlan(
        data_sql=data_sql,
        data_params={**params, "take": query.take, "skip": query.skip},
        count_sql=count_sql,
        count_params=dict(params),
    )
