NAMESPACE = "ops"

CYCLE_STATS_KEY = f"{NAMESPACE}:stats:cycles"
LEAD_STATS_KEY = f"{NAMESPACE}:stats:leads"


def cycle_key(cycle_id: int) -> str:
    return f"{NAMESPACE}:cycle:{cycle_id}"


def lead_key(lead_id: int) -> str:
    return f"{NAMESPACE}:lead:{lead_id}"


def cycle_write_keys(cycle_id: int) -> tuple[str, ...]:
    return (cycle_key(cycle_id), CYCLE_STATS_KEY)


def lead_write_keys(lead_id: int) -> tuple[str, ...]:
    return (lead_key(lead_id), LEAD_STATS_KEY)
