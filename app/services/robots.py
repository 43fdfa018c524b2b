"""robots.txt parsing."""

from typing import Dict, List, NamedTuple


class RobotsRules(NamedTuple):
    allow: Dict[str, List[str]]
    disallow: Dict[str, List[str]]
    sitemaps: List[str]
    crawl_delay: Dict[str, float]


def parse_robots(text: str) -> RobotsRules:
    """Parse *text* into per-user-agent allow/disallow rules and sitemap URLs.

    Consecutive ``User-agent`` lines share the rule group that follows them.
    """
    allow: Dict[str, List[str]] = {}
    disallow: Dict[str, List[str]] = {}
    crawl_delay: Dict[str, float] = {}
    sitemaps: List[str] = []

    agents: List[str] = []
    in_rules = False
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            if in_rules:
                agents = []
                in_rules = False
            agents.append(value.lower())
        elif key in ("allow", "disallow"):
            in_rules = True
            if not value:
                continue
            target = allow if key == "allow" else disallow
            for agent in agents or ["*"]:
                target.setdefault(agent, []).append(value)
        elif key == "crawl-delay":
            in_rules = True
            try:
                delay = float(value)
            except ValueError:
                continue
            for agent in agents or ["*"]:
                crawl_delay[agent] = delay
        elif key == "sitemap" and value:
            sitemaps.append(value)

    return RobotsRules(allow=allow, disallow=disallow, sitemaps=sitemaps, crawl_delay=crawl_delay)
