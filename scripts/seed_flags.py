"""Seed a demo tenant document through the tenant store."""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config.flaggly_config import get_flaggly_settings
from src.dependencies import get_app_store
from src.exceptions import FlagglyError


SEED_SEGMENTS = {
    "beta-testers": {
        "type": "condition",
        "attribute": "user.beta",
        "operator": "eq",
        "value": True,
    },
    "eu-visitors": {
        "type": "condition",
        "attribute": "geo.continent",
        "operator": "eq",
        "value": "EU",
    },
    "internal": {
        "type": "any",
        "rules": [
            {"type": "condition", "attribute": "user.email", "operator": "ends_with", "value": "@flaggly.dev"},
            {"type": "condition", "attribute": "request.headers.x-internal", "operator": "exists"},
        ],
    },
}

SEED_FLAGS = [
    {
        "id": "new-checkout",
        "kind": "boolean",
        "label": "New checkout flow",
        "enabled": True,
        "segments": ["internal", "beta-testers"],
        "rollout": {"on": 1000, "off": 9000},
        "default": False,
    },
    {
        "id": "pricing-page",
        "kind": "variant",
        "label": "Pricing page experiment",
        "enabled": True,
        "variants": ["control", "annual-first", "monthly-first"],
        "default": "control",
        "segments": ["eu-visitors"],
        "segment_rollouts": {"eu-visitors": {"control": 5000, "annual-first": 5000}},
        "rollout": {"control": 3400, "annual-first": 3300, "monthly-first": 3300},
    },
    {
        "id": "banner",
        "kind": "payload",
        "label": "Homepage banner",
        "enabled": False,
        "payload": {"title": "Spring sale", "cta": "/sale"},
        "default": None,
    },
]


async def seed(app: str, env: str) -> None:
    """Create seed segments and flags for one tenant."""
    store = get_app_store(app, env)

    print("=" * 60)
    print(f"Seeding flags for {store.key}")
    print("=" * 60)

    for segment_id, rule in SEED_SEGMENTS.items():
        await store.put_segment(segment_id, rule)
        print(f"  segment: {segment_id}")

    for flag in SEED_FLAGS:
        data = await store.put_flag(flag)
        print(f"  flag:    {flag['id']} (document version {data.version})")

    print("\nDone.")


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--app", default="demo")
    parser.add_argument("--env", default="development")
    parser.add_argument(
        "--allow-memory",
        action="store_true",
        help="Seed the in-process memory backend anyway (nothing is persisted)",
    )
    args = parser.parse_args()

    if get_flaggly_settings().kv_backend == "memory" and not args.allow_memory:
        print(
            "FLAGGLY_KV_BACKEND is 'memory'; seeded flags would be lost when this script exits. "
            "Set FLAGGLY_KV_BACKEND=supabase or pass --allow-memory.",
            file=sys.stderr,
        )
        return 1

    try:
        asyncio.run(seed(args.app, args.env))
    except FlagglyError as e:
        print(f"Seeding failed: {e.to_dict()}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
