"""
Cluster Smoke Test

Discovers a memcached cluster through its config endpoint, writes twenty keys
with a short TTL and reads each back through fetch().

Usage:
    python examples/cluster_smoke.py [endpoint]

The endpoint defaults to localhost:11210. Logs are emitted at DEBUG level.
"""

import asyncio
import logging
import sys

from clustercache import ClusterCacheConfig, create_client, setup_logging
from clustercache.config import DiscoveryConfig

logger = logging.getLogger("cluster_smoke")


async def main(endpoint: str) -> int:
    setup_logging("DEBUG", pretty=True)
    config = ClusterCacheConfig(discovery=DiscoveryConfig(endpoint=endpoint))

    async with create_client(config) as client:
        nodes = sorted(str(node.address) for node in client.registry.resolve())
        print("Discovered nodes:")
        for node in nodes:
            print(f"  {node}")

        failures = 0
        for i in range(20):
            key = f"key{i}"
            written = await client.set(key, f"value{i}", ttl=10)
            if not written.success:
                failures += 1
                logger.error(f"Write of {key} failed", extra={"error_code": written.error_code})
                continue

            fetched = await client.fetch(key, 10, lambda i=i: f"value{i}")
            print(fetched.value.decode() if fetched.value is not None else None)

        print(await client.get_stats())
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "localhost:11210")))
